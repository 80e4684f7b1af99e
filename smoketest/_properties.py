from pathlib import Path

from smoketest.errors import ConfigurationError


TEST_CONFIG_FILENAME = "testInfo.properties"

WAR_FILE_PROPERTY = "ai.smoketest.testAppWarFile"


class TestProperties:
    """Key/value test configuration, in .properties syntax"""

    __test__ = False  # pytest must not collect it

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values = dict(values or {})

    @staticmethod
    def parse(text: str) -> "TestProperties":
        values = {}
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line[0] in "#!":
                continue

            separators = [index for index in (line.find("="), line.find(":")) if index != -1]
            if not separators:
                values[line] = ""
                continue

            index = min(separators)
            values[line[:index].strip()] = line[index + 1 :].strip()

        return TestProperties(values)

    @staticmethod
    def load(resources_dir: str | Path, filename: str = TEST_CONFIG_FILENAME) -> "TestProperties":
        path = Path(resources_dir) / filename
        try:
            return TestProperties.parse(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Can't read test properties {path}: {e}") from e

    def get(self, key: str) -> str:
        if key not in self._values:
            raise ConfigurationError(f"test property not found '{key}'")

        return self._values[key]

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"TestProperties({self._values})"
