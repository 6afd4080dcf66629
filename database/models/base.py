from sqlalchemy import JSON, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Postgres column types with portable fallbacks so the schema also runs on SQLite
TextArray = ARRAY(Text).with_variant(JSON(), "sqlite")
JsonDocument = JSONB().with_variant(JSON(), "sqlite")
