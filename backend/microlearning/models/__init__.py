# This file makes the 'models' directory a Python package.

from .training_item import TrainingItem
from .review_period import ReviewPeriod
