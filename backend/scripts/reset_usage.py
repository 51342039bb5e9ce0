from memberbase.core.logging import configure_logging
from memberbase.db.repositories import SqlSystemRepo
from memberbase.db.session import SessionLocal
from memberbase.services.tiers import TierDirectory
from memberbase.services.usage import UsageEngine


def main():
    configure_logging()
    db = SessionLocal()
    try:
        repo = SqlSystemRepo(db)
        count = UsageEngine(repo, TierDirectory(repo)).reset_periodic_usage()
        db.commit()
        print(f"ok: periodic usage reset done (reset={count})")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
