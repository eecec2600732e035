"""
Call-leg status reconciliation service.

Keep import side-effect free: submodules pull in SQLAlchemy/FastAPI on demand.
"""

__version__ = "0.1.0"
