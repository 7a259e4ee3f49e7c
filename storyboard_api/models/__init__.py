"""
모델 패키지
"""

from .storyboard import Storyboard, StoryboardScene
from .credit import CreditAccount, CreditTransaction

__all__ = [
    "Storyboard",
    "StoryboardScene",
    "CreditAccount",
    "CreditTransaction",
]
