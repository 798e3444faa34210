from contract_finder.models.user import User
from contract_finder.models.search_job import SearchJob

__all__ = ["User", "SearchJob"]
