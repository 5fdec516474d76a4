from uuid import UUID


class ReminderError(Exception):
    pass


class ReminderValidationError(ReminderError, ValueError):
    pass


class ReminderNotFoundError(ReminderError, LookupError):
    reminder_id: UUID

    def __init__(self, reminder_id: UUID):
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id
