"""Company matching."""
from .company_directory import CompanyDirectory, CompanyMatch

__all__ = ["CompanyDirectory", "CompanyMatch"]
