import sys
from unittest.mock import MagicMock

# pd_engine.db.connection imports pyodbc; stub it so tests run without ODBC drivers
if "pyodbc" not in sys.modules:
    sys.modules["pyodbc"] = MagicMock()
