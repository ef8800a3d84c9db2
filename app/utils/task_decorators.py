def every(**schedule):
    """Mark a function in `tasks/` for the scheduler.

    Plural keys (`minutes=5`) make an interval job; singular keys
    (`hour=1, minute=0`) make a cron job.
    """
    def decorator(func):
        func._schedule = schedule
        return func
    return decorator
