from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from rich import print
from rich.table import Table

from .config import Settings, load_settings
from .data_models import ScoredCandidate
from .errors import MatchingError
from .icebreakers import suggest_icebreakers
from .ingest import ingest_survey_csv
from .logging_utils import configure_logging
from .matcher import find_or_create_group, get_candidates, get_my_group, get_similar_users
from .mood import mood_analytics, record_mood
from .onboarding import check_onboarding_status, require_user
from .store import SQLiteStore
from .surveys import score_loneliness, tally_leisure, top_categories


app = typer.Typer(help="Buddy group matching CLI")


class _State:
	settings: Settings = Settings()
	store: Optional[SQLiteStore] = None


state = _State()


def _store() -> SQLiteStore:
	if state.store is None:
		state.store = SQLiteStore(state.settings.db_path, timeout=state.settings.db_timeout)
	return state.store


def _fail(err: MatchingError) -> None:
	print(f"[red]{err.user_message}[/red]")
	raise typer.Exit(code=1)


@app.callback()
def main(
	db: Optional[Path] = typer.Option(None, help="SQLite database file (overrides BUDDY_DB_PATH)"),
	env_file: Optional[Path] = typer.Option(None, help="Load settings from this .env file"),
):
	"""Build profiles, score compatibility and allocate buddy groups."""
	settings = load_settings(env_file)
	configure_logging(settings.log_level)
	state.settings = settings
	state.store = SQLiteStore(db or settings.db_path, timeout=settings.db_timeout)


def _candidates_table(results: List[ScoredCandidate]) -> Table:
	table = Table("user_id", "name", "loneliness", "leisure", "match_score")
	for c in results:
		table.add_row(
			c.profile.user_id,
			c.display_name or "",
			c.profile.loneliness_category.value if c.profile.loneliness_category else "",
			", ".join(cat.label for cat in c.profile.top_leisure_categories),
			f"{c.match_score:.1f}",
		)
	return table


def _candidates_df(results: List[ScoredCandidate]) -> pd.DataFrame:
	rows = []
	for rank, c in enumerate(results, start=1):
		row_payload = {
			"rank": rank,
			"user_id": c.profile.user_id,
			"display_name": c.display_name or "",
			"loneliness_category": c.profile.loneliness_category.value if c.profile.loneliness_category else "",
			"top_leisure_categories": ";".join(cat.value for cat in c.profile.top_leisure_categories),
			"match_score": round(c.match_score, 2),
		}
		for k_, v_ in c.components.items():
			row_payload[f"score_{k_}"] = round(v_, 3)
		rows.append(row_payload)
	return pd.DataFrame(rows)


def _show_candidates(results: List[ScoredCandidate], out_path: Optional[Path], title: str) -> None:
	if not results:
		print(f"[yellow]No {title} found[/yellow]")
		return
	print(_candidates_table(results))
	if out_path:
		_candidates_df(results).to_csv(out_path, index=False)
		print(f"[green]Saved {title} to[/green] {out_path}")


@app.command("init-db")
def init_db():
	"""Create the database tables if they do not exist."""
	_store().init_schema()
	print(f"[green]Initialized[/green] {_store().db_path}")


@app.command("add-user")
def add_user(
	user_id: str = typer.Argument(..., help="User identifier"),
	name: Optional[str] = typer.Option(None, help="Display name"),
):
	try:
		_store().add_user(require_user(user_id), name)
	except MatchingError as e:
		_fail(e)
	print(f"[green]Saved user[/green] {user_id}")


@app.command()
def loneliness(
	user_id: str = typer.Argument(..., help="User identifier"),
	answers: List[int] = typer.Argument(..., help="Six answers, 1 (Never) .. 4 (Always)"),
):
	"""Record a loneliness survey."""
	try:
		total, category = score_loneliness(answers)
		_store().add_loneliness_assessment(require_user(user_id), answers, total, category)
	except MatchingError as e:
		_fail(e)
	print(f"[green]Loneliness score[/green] {total} ({category.value})")


@app.command()
def leisure(
	user_id: str = typer.Argument(..., help="User identifier"),
	answers: List[str] = typer.Argument(..., help="Five forced-choice answers as category letters"),
):
	"""Record a leisure survey."""
	try:
		counts = tally_leisure(answers)
		top = top_categories(counts)
		_store().add_leisure_assessment(require_user(user_id), answers, counts, top)
	except MatchingError as e:
		_fail(e)
	print(f"[green]Top leisure categories:[/green] {', '.join(c.label for c in top)}")


@app.command()
def mood(
	user_id: str = typer.Argument(..., help="User identifier"),
	value: int = typer.Argument(..., help="Mood 1 (low) .. 5 (great)"),
	notes: Optional[str] = typer.Option(None, help="Optional note"),
):
	"""Record a mood entry."""
	try:
		record_mood(_store(), user_id, value, notes=notes)
	except MatchingError as e:
		_fail(e)
	print(f"[green]Recorded mood[/green] {value}")


@app.command("mood-stats")
def mood_stats(
	user_id: str = typer.Argument(..., help="User identifier"),
	days: int = typer.Option(30, help="Window in days"),
):
	"""Show mood analytics for the recent window."""
	try:
		stats = mood_analytics(_store(), user_id, days=days)
	except MatchingError as e:
		_fail(e)
	print(
		f"[bold]Average {stats.average}[/bold] (highest {stats.highest}, lowest {stats.lowest}, "
		f"{stats.total_entries} entries)"
	)
	if stats.daily_averages:
		table = Table("date", "average")
		for day in stats.daily_averages:
			table.add_row(day.date, f"{day.average:.1f}")
		print(table)


@app.command()
def connect(
	user_a: str = typer.Argument(..., help="First user"),
	user_b: str = typer.Argument(..., help="Second user"),
):
	"""Record a connection between two users."""
	try:
		_store().add_connection(require_user(user_a), require_user(user_b))
	except MatchingError as e:
		_fail(e)
	print(f"[green]Connected[/green] {user_a} ↔ {user_b}")


@app.command()
def onboarding(user_id: str = typer.Argument(..., help="User identifier")):
	"""Show which surveys a user still has to complete."""
	try:
		status = check_onboarding_status(_store(), require_user(user_id))
	except MatchingError as e:
		_fail(e)
	if status.is_complete:
		print("[green]Onboarding complete[/green]")
	else:
		print(f"[yellow]Next step:[/yellow] {status.next_step} survey")


@app.command()
def candidates(
	user_id: str = typer.Argument(..., help="User identifier"),
	out_path: Optional[Path] = typer.Option(None, help="Write ranked candidates to this CSV"),
):
	"""Rank assessed users the caller is not yet connected to."""
	try:
		results = get_candidates(_store(), user_id, state.settings)
	except MatchingError as e:
		_fail(e)
	_show_candidates(results, out_path, "candidates")


@app.command()
def similar(
	user_id: str = typer.Argument(..., help="User identifier"),
	out_path: Optional[Path] = typer.Option(None, help="Write ranked users to this CSV"),
):
	"""Rank users outside the caller's current buddy group."""
	try:
		results = get_similar_users(_store(), user_id, state.settings)
	except MatchingError as e:
		_fail(e)
	_show_candidates(results, out_path, "similar users")


@app.command("find-or-create")
def find_or_create(
	user_id: str = typer.Argument(..., help="User identifier"),
	icebreakers: bool = typer.Option(False, "--icebreakers/--no-icebreakers", help="Suggest icebreaker topics"),
):
	"""Join a matching buddy group, or start a new one."""
	try:
		allocation = find_or_create_group(_store(), user_id, state.settings)
	except MatchingError as e:
		_fail(e)
	group = allocation.group
	print(f"[bold]{allocation.message}[/bold]")
	print(
		f"Group {group.group_id} ({group.matching_criteria.loneliness_category.value}) "
		f"{group.member_count}/{group.capacity} members, role: {allocation.membership.role.value}"
	)
	if icebreakers:
		for i, topic in enumerate(suggest_icebreakers(_store(), group, state.settings), start=1):
			print(f"  {i}. {topic}")


@app.command("my-group")
def my_group(user_id: str = typer.Argument(..., help="User identifier")):
	"""Show the caller's active buddy group."""
	try:
		view = get_my_group(_store(), user_id)
	except MatchingError as e:
		_fail(e)
	if view is None:
		print("[yellow]Not in a buddy group yet[/yellow]")
		return
	table = Table("user_id", "name", "role", "joined_at")
	for member in view.members:
		table.add_row(
			member.membership.user_id,
			member.display_name or "",
			member.membership.role.value,
			str(member.membership.joined_at or ""),
		)
	print(f"[bold]Group {view.group.group_id}[/bold] (you are {view.my_role.value})")
	print(table)


@app.command()
def ingest(csv_path: Path = typer.Argument(..., help="Survey export CSV")):
	"""Import survey results, one user per row."""
	try:
		report = ingest_survey_csv(_store(), csv_path)
	except MatchingError as e:
		_fail(e)
	except KeyError as e:
		print(f"[red]{e.args[0]}[/red]")
		raise typer.Exit(code=1)
	print(
		f"[green]Imported {report.users} users[/green] "
		f"({report.loneliness_assessments} loneliness, {report.leisure_assessments} leisure)"
	)
	for reason in report.skipped:
		print(f"[yellow]Skipped[/yellow] {reason}")


if __name__ == "__main__":
	app()
