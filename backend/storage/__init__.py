from .database import (
    init_database,
    close_db,
    write_blob,
    read_blob,
    delete_blob,
    log_sentmail,
    count_sentmail_recipients,
    log_maillog,
    get_maillog,
    search_contacts,
    import_contact,
    get_recipient_certificate,
)

__all__ = [
    "init_database",
    "close_db",
    "write_blob",
    "read_blob",
    "delete_blob",
    "log_sentmail",
    "count_sentmail_recipients",
    "log_maillog",
    "get_maillog",
    "search_contacts",
    "import_contact",
    "get_recipient_certificate",
]
