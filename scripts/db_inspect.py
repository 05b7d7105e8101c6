"""Print the latest rows written to a register log table.

Usage: python scripts/db_inspect.py <connection-string> [table] [limit]
"""
import sys

from sqlalchemy import create_engine, desc, inspect, select
from sqlalchemy import MetaData, Table
from sqlalchemy.exc import SQLAlchemyError

if len(sys.argv) < 2:
    print(__doc__.strip().splitlines()[-1], file=sys.stderr)
    sys.exit(2)

url = sys.argv[1]
table_name = sys.argv[2] if len(sys.argv) > 2 else "RegisterLogs"
limit = int(sys.argv[3]) if len(sys.argv) > 3 else 20
schema = None
if "." in table_name:
    schema, table_name = table_name.split(".", 1)

engine = create_engine(url)
try:
    insp = inspect(engine)
    print("tables:", insp.get_table_names(schema=schema))
    if not insp.has_table(table_name, schema=schema):
        print(table_name, "missing")
        sys.exit(1)
    t = Table(table_name, MetaData(), autoload_with=engine, schema=schema)
    order = t.c.Timestamp if "Timestamp" in t.c else list(t.c)[0]
    with engine.connect() as con:
        rows = con.execute(select(t).order_by(desc(order)).limit(limit)).fetchall()
    print(table_name, "latest rows:", len(rows))
    for r in rows:
        print(tuple(r))
except SQLAlchemyError as e:
    print(table_name, "err", e)
    sys.exit(1)
finally:
    engine.dispose()
