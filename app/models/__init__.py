from .user import User, Organization, Base
from .customer import Customer
from .subscription import Subscription
