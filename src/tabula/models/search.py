"""Full-text search table for records."""

from sqlalchemy import DDL

# FTS5 virtual table; ids are stored as text and never tokenized
CREATE_RECORD_SEARCH = DDL("""
CREATE VIRTUAL TABLE IF NOT EXISTS record_search USING fts5(
    record_id UNINDEXED,
    table_id UNINDEXED,
    content,
    tokenize='unicode61 remove_diacritics 2'
);
""")
