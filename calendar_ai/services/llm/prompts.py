"""Prompt templates for turning schedules into calendar events"""

_OUTPUT_RULES = """
Rules:
1. Dates use the format YYYY-MM-DDTHH:MM:SS, in the event's own timezone.
2. Timezones are IANA names, e.g. 'Europe/Rome' or 'America/New_York'.
3. Write titles in the output language given above (ISO 639-1 code).
4. Locations:
   - A specific place (venue, address) goes in "location", not in the title.
   - A generic city or country stays in the title and "location" is null.
   - For a transfer, use the departure point as "location" when it is known.
   - Format a location as "place name, address" when both are present.

Examples:
- "Meeting at Palazzo Vecchio" -> title "Meeting", location "Palazzo Vecchio"
- "Flight to Paris" -> title "Flight to Paris", location null
- "Train from Milano Centrale to Roma Termini" -> title "Train to Roma Termini", location "Milano Centrale"

{calendar_context}

Avoid proposing times that clash with the existing events above unless the
input explicitly asks for them.

Reply with ONLY a JSON array. Every element has the keys title, start, end,
location and timezone. No Markdown, no commentary. For example:
[
  {{
    "title": "Team sync",
    "start": "2025-05-14T15:00:00",
    "end": "2025-05-14T16:00:00",
    "location": "Palazzo Vecchio",
    "timezone": "Europe/Rome"
  }}
]
"""

CALENDAR_TEXT_PROMPT = """
You organize calendars. Convert the user's free-form text below into structured calendar events.
Current date and time: {formatted_now}
Current timezone: {timezone}
Output language: {language}
""" + _OUTPUT_RULES

CALENDAR_IMAGE_PROMPT = """
You organize calendars. Convert the attached image of a schedule, plus any extra text, into structured calendar events.
Current date and time: {formatted_now}
Current timezone: {timezone}
Output language: {language}
""" + _OUTPUT_RULES


def build_prompt(template: str, formatted_now: str, timezone: str, language: str, calendar_context: str = "") -> str:
    """Fill a prompt template; an empty context leaves no trace in the prompt"""
    return template.format(
        formatted_now=formatted_now,
        timezone=timezone,
        language=language,
        calendar_context=calendar_context,
    ).strip()
