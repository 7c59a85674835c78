from enum import Enum


class CronSchedule(Enum):
    """Crontab presets selectable by name from settings."""
    EVERY_MINUTE = "* * * * *"
    EVERY_5_MINUTES = "*/5 * * * *"
    EVERY_15_MINUTES = "*/15 * * * *"
    EVERY_HOUR = "0 * * * *"
    DAILY_MIDNIGHT = "0 0 * * *"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> "CronSchedule":
        """
        Look up a preset by name, ignoring case ("every_5_minutes" works).

        Raises:
            ValueError: unknown preset name
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown schedule '{name}', expected one of: "
                f"{', '.join(s.name for s in cls)}") from None
