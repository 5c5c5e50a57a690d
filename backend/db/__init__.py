# Database utilities package
from .engine import warmup
