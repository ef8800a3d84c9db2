from app.dummy.user import seed_users
from app.dummy.jobs import seed_jobs

SEEDERS = {
    "users": seed_users,
    "jobs": seed_jobs,
}
