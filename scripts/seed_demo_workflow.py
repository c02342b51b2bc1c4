#!/usr/bin/env python3
"""
Agency Delivery Workflow: Demo Seed.

Creates one website project with four stages, two of them gated behind a
client approval, and walks the first stage to a pending approval so the
public link can be tried right away.

Usage:
    python scripts/seed_demo_workflow.py                 # reset DB + seed
    python scripts/seed_demo_workflow.py --no-reset      # keep existing data
    python scripts/seed_demo_workflow.py --project demo-2
"""

import argparse
import sys

sys.path.insert(0, ".")

from app import create_app
from app.models import db
from app.services import workflow_service
from app.services.notification import NotificationDispatcher

DEMO_STAGES = [
    {
        "name": "Briefing",
        "description": "Scope, goals and brand assets collected from the client",
        "requires_client_approval": True,
        "items": ["Kick-off meeting", "Brand assets received", "Sitemap agreed"],
    },
    {
        "name": "Design",
        "description": "Layouts for every page template",
        "requires_client_approval": True,
        "items": ["Home page layout", "Inner page layout", "Mobile layouts"],
    },
    {
        "name": "Development",
        "items": ["Theme build", "Content migration", "Contact form", "Analytics"],
    },
    {
        "name": "Launch",
        "items": ["DNS switch", "SSL certificate", "Post-launch check"],
    },
]


def seed_demo(project_id):
    workflow, err = workflow_service.setup_project_stages(project_id, DEMO_STAGES)
    if err:
        print(f"  ❌ {err['error']}")
        return
    print(f"  ✅ {len(workflow['stages'])} stages created for project {project_id}")

    briefing = workflow["stages"][0]
    for item in briefing["items"]:
        _, err = workflow_service.toggle_checklist_item(item["id"], "demo-seed")
        if err:
            print(f"  ❌ {err['error']}")
            return
    print("  ✅ Briefing checklist completed")

    _, err = workflow_service.add_stage_attachment(briefing["id"], "demo-seed", {
        "file_name": "sitemap.pdf",
        "file_url": "https://files.example.com/demo/sitemap.pdf",
        "file_type": "application/pdf",
        "description": "Agreed sitemap",
    })
    if err:
        print(f"  ❌ {err['error']}")
        return

    result, err = workflow_service.request_approval(
        briefing["id"], "demo-seed", notes="Please review the agreed sitemap.",
    )
    NotificationDispatcher.wait_for_pending(timeout=30)
    if err:
        print(f"  ❌ {err['error']}")
        return

    print(f"\n{'═' * 60}")
    print("  🎉 DEMO SEED COMPLETE")
    print(f"  Client approval link: {result['share_url']}")
    print(f"{'═' * 60}\n")


def main():
    parser = argparse.ArgumentParser(description="Demo workflow seed")
    parser.add_argument("--project", default="demo-website",
                        help="Project identifier (default: demo-website)")
    parser.add_argument("--no-reset", action="store_true",
                        help="Don't clear existing data")
    args = parser.parse_args()

    app = create_app()
    print(f"  🎯 DB: {app.config['SQLALCHEMY_DATABASE_URI']}\n")

    with app.app_context():
        if not args.no_reset:
            db.drop_all()
            db.create_all()
            print("  ♻️  Database reset complete\n")

        seed_demo(args.project)


if __name__ == "__main__":
    main()
