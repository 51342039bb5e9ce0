from memberbase.core.logging import configure_logging
from memberbase.db.repositories import SqlSystemRepo
from memberbase.db.session import SessionLocal
from memberbase.services.tiers import TierDirectory
from memberbase.services.trial import TrialStateMachine
from memberbase.services.usage import UsageEngine


def main():
    configure_logging()
    db = SessionLocal()
    try:
        repo = SqlSystemRepo(db)
        directory = TierDirectory(repo)
        trials = TrialStateMachine(repo, directory, UsageEngine(repo, directory))
        report = trials.expire_trials()
        db.commit()
        print(f"ok: trial expiry done (expired={report.expired}, errors={report.errors})")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
