"""
Monday.com column IDs and status labels.
Column IDs are specific to the Ooosh boards.
"""

# Freelance Crew board columns
FREELANCER_COLUMNS = {
    "email": "email",
    "notifications_paused_until": "date_mkywsxdc",
    "muted_job_ids": "text_mkzmuted",
}

# Deliveries & Collections board columns
DC_COLUMNS = {
    "hh_ref": "text2",
    "deliver_collect": "status_1",  # "Delivery" or "Collection"
    "date": "date4",
    "time_to_arrive": "hour",
    "venue_connect": "connect_boards6",
    "venue_mirror": "mirror467",
    "client_mirror": "lookup_mm01477j",
    "driver_email_mirror": "driver_email__gc_",
    "status": "status90",
    "completion_notes": "long_text_mkyweafm",
    "completion_photos": "file_mkyww89n",
    "signature": "file_mkywf297",
    "completed_at_date": "date_mkywpv0h",
    "completed_at_time": "hour_mkywgx0x",
    "completion_reminder_level": "text_mm00jreb",
}

# Warehouse (quick hire) board columns
WAREHOUSE_COLUMNS = {
    "on_hire_status": "status51",
}

# Columns fetched for every job read; keeps response size down
DC_COLUMNS_TO_FETCH = [
    DC_COLUMNS["hh_ref"],
    DC_COLUMNS["deliver_collect"],
    DC_COLUMNS["date"],
    DC_COLUMNS["time_to_arrive"],
    DC_COLUMNS["venue_connect"],
    DC_COLUMNS["venue_mirror"],
    DC_COLUMNS["client_mirror"],
    DC_COLUMNS["driver_email_mirror"],
    DC_COLUMNS["status"],
    DC_COLUMNS["completed_at_date"],
    DC_COLUMNS["completion_notes"],
    DC_COLUMNS["completion_reminder_level"],
]

STATUS_LABEL_DONE = "All done!"
STATUS_LABEL_ON_HIRE = "On hire!"
