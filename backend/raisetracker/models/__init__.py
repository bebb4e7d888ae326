# Import all models so Base.metadata is populated for create_all.
from raisetracker.models.user import User  # noqa: F401
from raisetracker.models.investor import Investor, InvestorTask  # noqa: F401
from raisetracker.models.activity import ActivityEvent  # noqa: F401
