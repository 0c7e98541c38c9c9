from .db import db
from .token import Token
from .session import Session
