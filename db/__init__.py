from .db import (
    Base,
    get_engine,
    create_all,
    dispose_engine,
    run_sync,
    insert_user,
    insert_course,
    get_user,
    fetch_reminder_slots,
    has_recent_send,
    claim_delivery,
    mark_delivery_sent,
    mark_delivery_failed,
    record_delivery,
    latest_delivery,
    search_email_logs,
    list_courses_with_reminder_state,
    list_users,
    email_stats,
)  # noqa: F401
