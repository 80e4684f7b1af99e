"""Correlation-Context header values of an incoming request"""

CORRELATION_CONTEXT_HEADER = "Correlation-Context"


class CorrelationContext:
    """Raw header values, in arrival order, and the key/value pairs they contain.

    Created for one incoming request, and dropped with it.
    """

    def __init__(self) -> None:
        self.header_values: list[str] = []
        self.mappings: dict[str, str] = {}

    @staticmethod
    def from_headers(values: list[str]) -> "CorrelationContext":
        result = CorrelationContext()
        for value in values:
            result.add_header_value(value)
        return result

    def add_header_value(self, value: str) -> None:
        self.header_values.append(value)

        for pair in value.split(","):
            if "=" not in pair:
                continue

            key, item = pair.split("=", 1)
            key = key.strip()
            if key:
                self.mappings[key] = item.strip()

    def to_header(self) -> str:
        """Value to propagate on outgoing requests"""
        return ", ".join(self.header_values)

    def __repr__(self) -> str:
        return f"CorrelationContext({self.mappings})"
