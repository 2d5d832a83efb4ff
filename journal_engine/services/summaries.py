"""
Scheduled daily, weekly and monthly summaries.

A daily summary is generated from the day's events, a weekly summary from the
week's daily summaries and a monthly summary from the month's weekly
summaries. Each is stored in its own table and embedded as a
`daily_summary`, `weekly_summary` or `monthly_summary` memory so it can anchor
later retrievals.
"""
import json
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from langchain_core.exceptions import OutputParserException
from pydantic import BaseModel, Field

from journal_engine.core.errors import NotFound
from journal_engine.core.logging import logger
from journal_engine.db.journal import JournalStore
from journal_engine.graph import prompts
from journal_engine.graph.nodes import EmbedFn, LLMFn
from journal_engine.services.llm import parse_structured_output


FALLBACK_TEXT = "Review your day and reflect on patterns."
WEEKLY_FALLBACK_TEXT = "Review your week for patterns."
MONTHLY_FALLBACK_TEXT = "Review your month for strategic insights."

NOTE_TYPES = ("note", "note+question")
IDEA_TYPES = ("question", "note+question")


class TimeAllocation(BaseModel):
    meetings: int = 20
    deep_work: int = 60
    other: int = 20


class DailySummaryContent(BaseModel):
    """Stored in the `content` column of `daily_summaries`."""
    score: int = Field(70, ge=0, le=100)
    score_label: str = "Solid"
    explanation: str = FALLBACK_TEXT
    time_allocation: TimeAllocation = Field(default_factory=TimeAllocation)
    notes_added: int = 0
    new_ideas: int = 0
    narrative_summary: str = FALLBACK_TEXT

    def embedding_text(self) -> str:
        return f"{self.score_label}: {self.explanation} {self.narrative_summary}"


class WeeklySummaryContent(BaseModel):
    """Stored in the `content` column of `weekly_summaries`."""
    patterns: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=lambda: [WEEKLY_FALLBACK_TEXT])

    def embedding_text(self) -> str:
        return ". ".join(". ".join(part) for part in (self.patterns, self.themes, self.insights))


class MonthlySummaryContent(BaseModel):
    """Stored in the `content` column of `monthly_summaries`."""
    trends: List[str] = Field(default_factory=list)
    strategic_insights: List[str] = Field(default_factory=list)
    reflections: List[str] = Field(default_factory=lambda: [MONTHLY_FALLBACK_TEXT])

    def embedding_text(self) -> str:
        return ". ".join(". ".join(part) for part in (self.trends, self.strategic_insights, self.reflections))


class SummaryResult(BaseModel):
    user_id: str
    status: str
    error: Optional[str] = None


def previous_day(today: date) -> str:
    return (today - timedelta(days=1)).isoformat()


def previous_week_start(today: date) -> str:
    """Start (Sunday) of the week before the one containing `today`."""
    last_week = today - timedelta(days=7)
    return (last_week - timedelta(days=(last_week.weekday() + 1) % 7)).isoformat()


def previous_month_start(today: date) -> str:
    return (today.replace(day=1) - timedelta(days=1)).replace(day=1).isoformat()


def month_end(month_start: str) -> str:
    start = date.fromisoformat(month_start)
    next_month = (start.replace(day=28) + timedelta(days=4)).replace(day=1)
    return (next_month - timedelta(days=1)).isoformat()


def _number(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _normalized_allocation(raw: Dict[str, Any]) -> TimeAllocation:
    meetings = _number(raw.get("meetings"), 20)
    deep_work = _number(raw.get("deep_work"), 60)
    other = _number(raw.get("other"), 20)
    total = meetings + deep_work + other or 1
    return TimeAllocation(
        meetings=round(meetings * 100 / total),
        deep_work=round(deep_work * 100 / total),
        other=round(other * 100 / total),
    )


def build_summary_content(text: str, events: List[Dict[str, Any]]) -> DailySummaryContent:
    """
    Turn a model response into summary content. Counts the model leaves out
    are taken from the events; an unreadable response yields the defaults.
    """
    notes = sum(1 for e in events if e.get("type") in NOTE_TYPES)
    ideas = sum(1 for e in events if e.get("type") in IDEA_TYPES)

    try:
        parsed = parse_structured_output(text)
    except OutputParserException:
        logger.warning("Unreadable daily summary response, using defaults")
        return DailySummaryContent(notes_added=notes, new_ideas=ideas)

    notes_added = parsed.get("notes_added")
    new_ideas = parsed.get("new_ideas")
    return DailySummaryContent(
        score=min(100, max(0, int(_number(parsed.get("score"), 70)))),
        score_label=parsed.get("score_label") or "Solid",
        explanation=parsed.get("explanation") or FALLBACK_TEXT,
        time_allocation=_normalized_allocation(parsed.get("time_allocation") or {}),
        notes_added=notes_added if isinstance(notes_added, int) and notes_added >= 0 else notes,
        new_ideas=new_ideas if isinstance(new_ideas, int) and new_ideas >= 0 else ideas,
        narrative_summary=parsed.get("narrative_summary") or FALLBACK_TEXT,
    )


def build_weekly_content(text: str) -> WeeklySummaryContent:
    try:
        parsed = parse_structured_output(text)
    except OutputParserException:
        logger.warning("Unreadable weekly summary response, using defaults")
        return WeeklySummaryContent()

    return WeeklySummaryContent(
        patterns=_strings(parsed.get("patterns")),
        themes=_strings(parsed.get("themes")),
        insights=_strings(parsed.get("insights")) or [WEEKLY_FALLBACK_TEXT],
    )


def build_monthly_content(text: str) -> MonthlySummaryContent:
    try:
        parsed = parse_structured_output(text)
    except OutputParserException:
        logger.warning("Unreadable monthly summary response, using defaults")
        return MonthlySummaryContent()

    return MonthlySummaryContent(
        trends=_strings(parsed.get("trends")),
        strategic_insights=_strings(parsed.get("strategic_insights")),
        reflections=_strings(parsed.get("reflections")) or [MONTHLY_FALLBACK_TEXT],
    )


class SummaryService:
    """
    Shared flow of the periodic summaries: return the stored summary if one
    exists, otherwise generate, store and embed it. Subclasses supply the
    period arithmetic and the generation step.
    """

    period = "period"
    embedding_type = ""

    def __init__(self, journal: JournalStore, llm: LLMFn, embed: EmbedFn):
        self.journal = journal
        self.llm = llm
        self.embed = embed

    def default_period(self, today: Optional[date] = None) -> str:
        raise NotImplementedError

    async def _existing(self, user_id: str, start: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _create(self, user_id: str, start: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def generate(self, user_id: str, start: str) -> Dict[str, Any]:
        """
        Generate one user's summary for the period starting at `start`, or
        return the existing one.

        Raises:
            NotFound: If there is nothing to summarize
        """
        existing = await self._existing(user_id, start)
        if existing:
            logger.info(f"{self.period.capitalize()} summary for user {user_id} at {start} already exists")
            return existing
        return await self._create(user_id, start)

    async def _embed_summary(self, user_id: str, row: Dict[str, Any], text: str, start: str) -> None:
        """Best-effort: a summary without a memory vector is still kept."""
        try:
            embedding = await self.embed(text)
            await self.journal.store_embedding(user_id, text, embedding, {
                "type": self.embedding_type,
                "source_id": row["id"],
                "date": start,
            })
        except Exception as e:
            logger.warning(f"Could not embed {self.period} summary {row['id']}: {e}")

    async def run_batch(self, start: Optional[str] = None) -> List[SummaryResult]:
        """
        Summarize the period starting at `start` (the previous one by default)
        for every user. A failure is recorded for that user and the batch goes on.
        """
        start = start or self.default_period()
        results: List[SummaryResult] = []

        for user_id in await self.journal.list_user_ids():
            try:
                await self.generate(user_id, start)
                results.append(SummaryResult(user_id=user_id, status="success"))
            except Exception as e:
                logger.error(f"Failed to generate {self.period} summary for user {user_id}: {e}")
                results.append(SummaryResult(user_id=user_id, status="error", error=str(e)))

        succeeded = sum(r.status == "success" for r in results)
        logger.info(f"{self.period.capitalize()} summaries for {start}: {succeeded}/{len(results)} succeeded")
        return results


class DailySummaryService(SummaryService):
    """Generates and stores daily summaries."""

    period = "daily"
    embedding_type = "daily_summary"

    def default_period(self, today: Optional[date] = None) -> str:
        return previous_day(today or date.today())

    async def _existing(self, user_id: str, start: str) -> Optional[Dict[str, Any]]:
        return await self.journal.get_daily_summary(user_id, start)

    async def _create(self, user_id: str, day: str) -> Dict[str, Any]:
        events = await self.journal.list_daily_events(user_id, day)
        if not events:
            raise NotFound(f"No events found for {day}")

        events_text = "\n".join(f"[{e['role']}] {e['type']}: {e['content']}" for e in events)
        text = await self.llm(
            f"Date: {day}\n\nEvents:\n{events_text}",
            system_prompt=prompts.DAILY_SUMMARY_SYSTEM_PROMPT,
        )
        content = build_summary_content(text, events)

        row = await self.journal.save_daily_summary(user_id, day, content.model_dump())
        await self._embed_summary(user_id, row, content.embedding_text(), day)
        return row


class WeeklySummaryService(SummaryService):
    """Generates weekly summaries from the week's daily summaries."""

    period = "weekly"
    embedding_type = "weekly_summary"

    def default_period(self, today: Optional[date] = None) -> str:
        return previous_week_start(today or date.today())

    async def _existing(self, user_id: str, start: str) -> Optional[Dict[str, Any]]:
        return await self.journal.get_weekly_summary(user_id, start)

    async def _create(self, user_id: str, week_start: str) -> Dict[str, Any]:
        week_end = (date.fromisoformat(week_start) + timedelta(days=6)).isoformat()
        dailies = await self.journal.list_daily_summaries(user_id, week_start, week_end)
        if not dailies:
            raise NotFound(f"No daily summaries found for the week of {week_start}")

        summaries_text = "\n".join(f"{s['date']}: {json.dumps(s['content'])}" for s in dailies)
        text = await self.llm(
            f"Week starting: {week_start}\n\nDaily summaries:\n{summaries_text}",
            system_prompt=prompts.WEEKLY_SUMMARY_SYSTEM_PROMPT,
        )
        content = build_weekly_content(text)

        row = await self.journal.save_weekly_summary(user_id, week_start, content.model_dump())
        await self._embed_summary(user_id, row, content.embedding_text(), week_start)
        return row


class MonthlySummaryService(SummaryService):
    """Generates monthly summaries from the month's weekly summaries."""

    period = "monthly"
    embedding_type = "monthly_summary"

    def default_period(self, today: Optional[date] = None) -> str:
        return previous_month_start(today or date.today())

    async def _existing(self, user_id: str, start: str) -> Optional[Dict[str, Any]]:
        return await self.journal.get_monthly_summary(user_id, start)

    async def _create(self, user_id: str, month_start: str) -> Dict[str, Any]:
        weeklies = await self.journal.list_weekly_summaries(user_id, month_start, month_end(month_start))
        if not weeklies:
            raise NotFound(f"No weekly summaries found for the month of {month_start}")

        summaries_text = "\n".join(f"Week {s['week_start']}: {json.dumps(s['content'])}" for s in weeklies)
        text = await self.llm(
            f"Month starting: {month_start}\n\nWeekly summaries:\n{summaries_text}",
            system_prompt=prompts.MONTHLY_SUMMARY_SYSTEM_PROMPT,
        )
        content = build_monthly_content(text)

        row = await self.journal.save_monthly_summary(user_id, month_start, content.model_dump())
        await self._embed_summary(user_id, row, content.embedding_text(), month_start)
        return row
