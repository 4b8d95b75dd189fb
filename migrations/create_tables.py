import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from evently import create_app, db
import evently.models  # noqa: F401


def create_tables():
    app = create_app()
    with app.app_context():
        # Create events and registrations, including the partial unique index
        db.create_all()
        app.logger.info(f"Created tables: {', '.join(sorted(db.metadata.tables))}")

if __name__ == "__main__":
    create_tables()
