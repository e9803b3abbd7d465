from src.core.companies.models import Company
from src.core.companies.service import CompanyService

__all__ = ["Company", "CompanyService"]
