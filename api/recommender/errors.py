class RecommendationError(Exception):
    """Base class for errors raised by the recommendation core."""


class ConfigurationError(RecommendationError):
    """Static misconfiguration or malformed request options. Never retried."""


class InvalidWeightsError(ConfigurationError):
    def __init__(self, feature_set: str, total: float) -> None:
        super().__init__(f"Weights for feature set '{feature_set}' sum to {total:.6f}, expected 1.0")
        self.feature_set = feature_set
        self.total = total


class InvalidOptionsError(ConfigurationError):
    pass


class UpstreamUnavailable(RecommendationError):
    """A profile, interaction or activity store (or the inference model) could not be reached."""


class NotFoundError(RecommendationError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id
