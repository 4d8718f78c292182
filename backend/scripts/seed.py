"""Database seed script — creates a demo workflow exercising the common step kinds.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DEMO_WORKFLOW_NAME = "Demo: fetch, shape and greet"

DEMO_STEPS = [
    {
        "id": "fetch_user",
        "type": "http_request",
        "name": "Fetch user",
        "config": {"url": "https://jsonplaceholder.typicode.com/users/{{trigger.user_id}}"},
    },
    {
        "id": "shape",
        "type": "transform",
        "name": "Shape contact",
        "config": {"mapping": {"name": "{{fetch_user.name}}", "email": "{{fetch_user.email}}"}},
    },
    {
        "id": "has_email",
        "type": "condition",
        "name": "Has email",
        "config": {"condition": {"operator": "not_empty", "left": "{{shape.email}}"}, "ifTrue": []},
    },
    {
        "id": "greet",
        "type": "email",
        "name": "Send greeting",
        "config": {"to": "{{shape.email}}", "subject": "Hello {{shape.name}}", "body": "Welcome aboard."},
    },
]


async def seed():
    """Seed the database with the demo workflow."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.workflow import Workflow
    from services.workflow_service import WorkflowService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        result = await db.execute(
            select(Workflow).where(Workflow.name == DEMO_WORKFLOW_NAME)
        )
        workflow = result.scalar_one_or_none()

        if workflow:
            print(f"[seed] Workflow exists: {workflow.name} ({workflow.id})")
            return

        workflow = await WorkflowService(db).create_workflow(
            name=DEMO_WORKFLOW_NAME,
            description="Fetches a user, builds a contact and emails a greeting",
            steps=DEMO_STEPS,
        )
        await db.commit()
        print(f"[seed] Created workflow: {workflow.name} ({workflow.id})")
        print(f"[seed] Trigger it: POST /api/v1/workflows/{workflow.id}/execute "
              '{"trigger_data": {"user_id": 1}}')


if __name__ == "__main__":
    asyncio.run(seed())
