# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import salary_increment, salary_structure

from .salary_increment import SalaryIncrement
from .salary_structure import SalaryStructure
