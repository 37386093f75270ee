"""llm-tui - provider-neutral conversation engine with confirmed tool calls."""

__version__ = "0.1.0"

from llm_tui.config import Config, ProviderId
from llm_tui.engine import Conversation, TurnPhase

__all__ = ["Config", "Conversation", "ProviderId", "TurnPhase", "__version__"]
