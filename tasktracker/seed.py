import logging
from datetime import timedelta

from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.models import Task, TaskPriority, TaskStatus, get_utc_now
from tasktracker.repositories.identity_store import SqlIdentityStore
from tasktracker.repositories.task_store import SqlTaskStore

logger = logging.getLogger(__name__)

DEMO_USERNAME = "demo"
DEMO_PASSWORD = "demo123"
DEMO_EMAIL = "demo@tasktracker.com"

SAMPLE_TASKS = [
    ("Complete project documentation", "Write comprehensive documentation for the project",
     TaskStatus.IN_PROGRESS, TaskPriority.HIGH),
    ("Review pull requests", "Review and merge pending pull requests",
     TaskStatus.TODO, TaskPriority.MEDIUM),
    ("Fix bug in authentication", "Fix the JWT token expiration issue",
     TaskStatus.DONE, TaskPriority.HIGH),
    ("Update dependencies", "Update all project dependencies to latest versions",
     TaskStatus.TODO, TaskPriority.LOW),
    ("Prepare demo presentation", "Create slides for the product demo",
     TaskStatus.IN_PROGRESS, TaskPriority.MEDIUM),
]


async def seed_demo_data(db: AsyncSession) -> bool:
    """Create the demo account and its sample tasks once. Returns True if anything was written."""
    identities = SqlIdentityStore(db)
    if await identities.find_by_name(DEMO_USERNAME) is not None:
        return False

    principal = await identities.create_user(DEMO_USERNAME, DEMO_PASSWORD, DEMO_EMAIL)
    store = SqlTaskStore(db)
    now = get_utc_now()
    for title, description, status, priority in SAMPLE_TASKS:
        task = Task(
            title=title,
            description=description,
            status=status,
            priority=priority,
            owner_id=principal.id,
        )
        if status is TaskStatus.DONE:
            task.created_at = now - timedelta(days=2)
            task.completed_at = now - timedelta(days=1)
        await store.save(task)

    logger.info(f"Sample data initialized, demo user '{DEMO_USERNAME}' created")
    return True
