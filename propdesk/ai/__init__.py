from propdesk.ai.outcome import AiSucceeded, FallbackUsed, Outcome

__all__ = ["AiSucceeded", "FallbackUsed", "Outcome"]
