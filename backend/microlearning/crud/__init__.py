from .crud_training_item import training_item
from .crud_review_period import review_period
