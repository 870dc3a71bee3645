import argparse
import logging
import os
import re
import subprocess
import sys
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path

from git_wrapped.config import load_palette

logger = logging.getLogger(__name__)

MODE_SINGLE = "single"
MODE_ALL = "all"

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
WEEKDAY_NAMES = {
    "Mon": "Monday",
    "Tue": "Tuesday",
    "Wed": "Wednesday",
    "Thu": "Thursday",
    "Fri": "Friday",
    "Sat": "Saturday",
    "Sun": "Sunday",
}

BAR_WIDTH = 50
TOP_CONTRIBUTORS = 10
RULE = "━" * 60
BOX_TOP = "╔" + "═" * 60 + "╗"
BOX_BOTTOM = "╚" + "═" * 60 + "╝"

YEAR_PATTERN = re.compile(r"^[0-9]{4}$")


class GitWrappedError(Exception):
    pass


class NotAGitRepositoryError(GitWrappedError):
    def __init__(self, path):
        super().__init__(f"Not a git repository: {path}")
        self.path = path


class UsageError(GitWrappedError):
    pass


@dataclass(frozen=True)
class AnalysisRequest:
    year: int
    mode: str = MODE_SINGLE
    search_dir: Path = Path(".")
    verbose: bool = False
    color: bool = True


@dataclass
class RepoStats:
    name: str
    path: Path
    commit_count: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    merge_count: int = 0
    top_contributor: str = ""
    top_contributor_count: int = 0
    top_contributors: list = field(default_factory=list)
    busiest_weekday: str = ""
    busiest_weekday_count: int = 0
    longest_streak: int = 1

    @property
    def net_lines(self):
        return self.lines_added - self.lines_removed


@dataclass
class AggregateTotals:
    repo_count: int = 0
    commit_count: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    merge_count: int = 0

    @property
    def net_lines(self):
        return self.lines_added - self.lines_removed


# --- Argument parsing ---


class _ArgumentParser(argparse.ArgumentParser):
    # bad input exits 1 through main(), not with argparse's status 2
    def error(self, message):
        raise UsageError(f"Unknown option: {message}")


def build_parser(prog="git-wrapped"):
    parser = _ArgumentParser(
        prog=prog,
        description="Git Wrapped - Your Year in Code",
        add_help=False,
        allow_abbrev=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            f"  {prog}                       Show stats for current repository and year\n"
            f"  {prog} 2023                  Show stats for 2023\n"
            f"  {prog} --all                 Show summary for all repos in current directory\n"
            f"  {prog} --all --dir ~/repos   Show summary for all repos in ~/repos\n"
        ),
    )
    parser.add_argument(
        "--all",
        dest="all_repos",
        action="store_true",
        help="Find and summarize all git repositories in directory",
    )
    parser.add_argument(
        "--dir",
        dest="search_dir",
        default=".",
        metavar="DIR",
        help="Directory to search for repositories (default: current directory)",
    )
    parser.add_argument(
        "--no-color", action="store_true", help="Disable colored output"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log every git command"
    )
    parser.add_argument(
        "-h", "--help", action="store_true", help="Show this help message"
    )
    parser.add_argument(
        "year", nargs="?", help="Year to analyze (default: current year)"
    )
    return parser


def parse_request(argv=None):
    """Parse the command line into an AnalysisRequest.

    Returns None when help was requested. Raises UsageError for unknown
    options, a malformed year, or a second positional argument.
    """
    parser = build_parser()
    args, extras = parser.parse_known_args(argv)
    if args.help:
        return None
    if extras:
        raise UsageError(f"Unknown option: {extras[0]}")

    if args.year is None:
        year = datetime.now().year
    elif YEAR_PATTERN.match(args.year):
        year = int(args.year)
    else:
        raise UsageError(f"Unknown option: {args.year}")

    return AnalysisRequest(
        year=year,
        mode=MODE_ALL if args.all_repos else MODE_SINGLE,
        search_dir=Path(os.path.expanduser(args.search_dir)),
        verbose=args.verbose,
        color=not args.no_color,
    )


# --- Repository locator ---


def find_git_repos(search_dir):
    """Yield every directory under search_dir that holds a .git directory.

    The .git subtree itself is skipped, other subdirectories are still
    searched so nested repositories are found. Unreadable directories are
    silently left out.
    """
    for dirpath, dirnames, _ in os.walk(search_dir):
        if ".git" in dirnames:
            yield Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if d != ".git")


# --- Stats extraction ---


def run_git(args, cwd):
    """Run a read-only git command in cwd and return its stdout.

    Failures of any kind come back as an empty string.
    """
    cmd = ["git", *args]
    logger.debug("Executing command in %s: %s", cwd, " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, cwd=str(cwd), capture_output=True, text=True, check=True
        )
    except subprocess.CalledProcessError as e:
        logger.debug("git exited with %s: %s", e.returncode, (e.stderr or "").strip())
        return ""
    except OSError as e:
        logger.debug("Could not run git in %s: %s", cwd, e)
        return ""
    return result.stdout or ""


def is_git_repo(path):
    try:
        subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=str(path),
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, OSError):
        return False
    return True


def year_window(year):
    return [f"--since={year}-01-01 00:00:00", f"--until={year}-12-31 23:59:59"]


def _lines(output):
    return [line for line in output.splitlines() if line.strip()]


def parse_numstat(output):
    """Sum the added/removed columns of `git log --numstat` output."""
    added = removed = 0
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        # binary files report "-" for both columns
        if parts[0].isdigit():
            added += int(parts[0])
        if parts[1].isdigit():
            removed += int(parts[1])
    return added, removed


def rank_contributors(authors):
    """Rank author names by commit count, ties ordered by name."""
    counts = Counter(authors)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def busiest_weekday(dates):
    """Return (abbreviation, count) of the weekday with the most commits."""
    counts = Counter(WEEKDAYS[d.weekday()] for d in dates)
    if not counts:
        return "", 0
    # max() keeps the first maximum, so ties resolve Mon..Sun
    day = max(WEEKDAYS, key=lambda d: counts.get(d, 0))
    return day, counts[day]


def longest_streak(dates):
    """Length of the longest run of consecutive calendar days.

    Duplicate dates are collapsed first. An empty input reports 1, matching
    how the report has always presented a year without commits.
    """
    days = sorted(set(dates))
    best = current = 1
    for prev, day in zip(days, days[1:]):
        if day - prev == timedelta(days=1):
            current += 1
            best = max(best, current)
        else:
            current = 1
    return best


def _parse_author_dates(output):
    authors = []
    dates = []
    for line in _lines(output):
        try:
            author, date_str = line.rsplit("\t", 1)
            day = date.fromisoformat(date_str.strip())
        except ValueError:
            logger.warning("Skipping malformed commit entry: %r", line)
            continue
        authors.append(author)
        dates.append(day)
    return authors, dates


def get_repo_stats(path, year):
    """Collect the year's statistics for the repository at path.

    Raises NotAGitRepositoryError when path is not inside a git work tree.
    """
    path = Path(path)
    if not is_git_repo(path):
        raise NotAGitRepositoryError(path)

    window = year_window(year)

    commits = _lines(run_git(["log", *window, "--format=%H"], path))
    added, removed = parse_numstat(
        run_git(["log", *window, "--pretty=tformat:", "--numstat"], path)
    )
    merges = _lines(run_git(["log", *window, "--merges", "--format=%H"], path))
    authors, dates = _parse_author_dates(
        run_git(["log", *window, "--format=%an%x09%ad", "--date=short"], path)
    )

    ranked = rank_contributors(authors)
    top_name, top_count = ranked[0] if ranked else ("", 0)
    day, day_count = busiest_weekday(dates)

    return RepoStats(
        name=path.resolve().name,
        path=path,
        commit_count=len(commits),
        lines_added=added,
        lines_removed=removed,
        merge_count=len(merges),
        top_contributor=top_name,
        top_contributor_count=top_count,
        top_contributors=ranked[:TOP_CONTRIBUTORS],
        busiest_weekday=day,
        busiest_weekday_count=day_count,
        longest_streak=longest_streak(dates),
    )


def aggregate_totals(stats_list):
    totals = AggregateTotals()
    for stats in stats_list:
        totals.repo_count += 1
        totals.commit_count += stats.commit_count
        totals.lines_added += stats.lines_added
        totals.lines_removed += stats.lines_removed
        totals.merge_count += stats.merge_count
    return totals


# --- Rendering ---


def contributor_bar(count, total, width=BAR_WIDTH, bar_char="█"):
    if total <= 0 or count <= 0:
        return ""
    return bar_char * max(count * width // total, 1)


def percentage(count, total):
    if total <= 0:
        return "0.0"
    return f"{count / total * 100:.1f}"


def _banner(text, c, pad):
    return "\n".join(
        [
            f"{c.bold}{c.cyan}{BOX_TOP}{c.reset}",
            f"{c.bold}{c.cyan}║{c.reset}  {c.bold}{c.white}{text}{c.reset}  "
            f"{c.bold}{c.cyan}{' ' * pad}║{c.reset}",
            f"{c.bold}{c.cyan}{BOX_BOTTOM}{c.reset}",
        ]
    )


def _rule(c):
    return f"{c.bold}{c.green}{RULE}{c.reset}\n"


def render_footer(c):
    return _banner("Thanks for coding with us this year! 🎉", c, 16) + "\n"


def render_repo_report(stats, year, c):
    """Detailed single-repository report."""
    out = ["", _banner(f"🎵  GIT WRAPPED {year}  🎵", c, 36), ""]
    out.append(f"{c.bold}{c.yellow}📊 Calculating your stats...{c.reset}\n")
    out.append(_rule(c))

    out.append(f"{c.bold}{c.white}📈 TOTAL COMMITS{c.reset}")
    out.append(
        f"{c.cyan}You made {c.bold}{stats.commit_count}{c.reset}"
        f"{c.cyan} commits this year!{c.reset}\n"
    )

    out.append(f"{c.bold}{c.white}📝 LINES CHANGED{c.reset}")
    out.append(f"{c.green}+{stats.lines_added}{c.reset} {c.cyan}lines added{c.reset}")
    out.append(f"{c.red}-{stats.lines_removed}{c.reset} {c.cyan}lines removed{c.reset}")
    out.append(
        f"{c.yellow}{stats.net_lines}{c.reset} {c.cyan}net lines changed{c.reset}\n"
    )

    out.append(f"{c.bold}{c.white}🔀 MERGES{c.reset}")
    out.append(
        f"{c.magenta}You merged {c.bold}{stats.merge_count}{c.reset}"
        f"{c.magenta} branches this year!{c.reset}\n"
    )

    out.append(_rule(c))
    out.append(f"{c.bold}{c.white}🏆 TOP COMMITTERS{c.reset}\n")
    for name, count in stats.top_contributors:
        bar = contributor_bar(count, stats.commit_count)
        out.append(f"{c.cyan}{name}{c.reset}")
        out.append(
            f"  {c.green}{bar}{c.reset} {c.bold}{count}{c.reset} commits "
            f"({percentage(count, stats.commit_count)}%)"
        )
        out.append("")

    out.append(_rule(c))
    out.append(f"{c.bold}{c.white}📅 MOST ACTIVE DAY{c.reset}\n")
    if stats.busiest_weekday:
        day_name = WEEKDAY_NAMES.get(stats.busiest_weekday, stats.busiest_weekday)
        out.append(
            f"{c.yellow}{day_name}{c.reset} {c.cyan}was your most productive day "
            f"with {c.bold}{stats.busiest_weekday_count}{c.reset}{c.cyan} commits!{c.reset}\n"
        )

    out.append(f"{c.bold}{c.white}🔥 LONGEST STREAK{c.reset}\n")
    out.append(
        f"{c.red}🔥 Your longest commit streak: {c.bold}{stats.longest_streak}"
        f"{c.reset}{c.red} days!{c.reset}\n"
    )
    out.append(render_footer(c))
    return "\n".join(out)


def render_all_header(year, search_dir, c):
    return "\n".join(
        [
            "",
            _banner(f"🎵  GIT WRAPPED {year} - ALL REPOSITORIES  🎵", c, 12),
            "",
            f"{c.bold}{c.yellow}🔍 Searching for git repositories in: "
            f"{c.cyan}{search_dir}{c.reset}\n",
        ]
    )


def _display_path(path, cwd):
    try:
        return os.path.relpath(path, cwd)
    except ValueError:
        # different drive on Windows
        return str(path)


def _repo_heading(name, path, index, total, c, cwd):
    return [
        f"{c.bold}{c.white}[{index}/{total}] {c.cyan}{name}{c.reset}",
        f"{c.blue}Path: {_display_path(path, cwd)}{c.reset}\n",
    ]


def render_repo_summary(stats, index, total, c, cwd="."):
    out = _repo_heading(stats.name, stats.path, index, total, c, cwd)
    out.append(f"  {c.green}📈 Commits:{c.reset} {c.bold}{stats.commit_count}{c.reset}")
    out.append(f"  {c.green}➕ Lines added:{c.reset} {c.bold}{stats.lines_added}{c.reset}")
    out.append(f"  {c.red}➖ Lines removed:{c.reset} {c.bold}{stats.lines_removed}{c.reset}")
    out.append(f"  {c.yellow}📊 Net change:{c.reset} {c.bold}{stats.net_lines}{c.reset}")
    out.append(f"  {c.magenta}🔀 Merges:{c.reset} {c.bold}{stats.merge_count}{c.reset}")
    if stats.top_contributor:
        out.append(
            f"  {c.cyan}👤 Top committer:{c.reset} {c.bold}{stats.top_contributor}"
            f"{c.reset} ({stats.top_contributor_count} commits)"
        )
    out.append("")
    return "\n".join(out)


def render_repo_failure(path, index, total, c, cwd="."):
    out = _repo_heading(Path(path).resolve().name, path, index, total, c, cwd)
    out.append(f"  {c.red}⚠️  Could not calculate stats{c.reset}")
    out.append("")
    return "\n".join(out)


def render_grand_totals(totals, c):
    return "\n".join(
        [
            _rule(c),
            f"{c.bold}{c.white}📊 GRAND TOTALS ACROSS ALL REPOSITORIES{c.reset}\n",
            f"{c.cyan}Total commits:{c.reset} {c.bold}{totals.commit_count}{c.reset}",
            f"{c.green}Total lines added:{c.reset} {c.bold}{totals.lines_added}{c.reset}",
            f"{c.red}Total lines removed:{c.reset} {c.bold}{totals.lines_removed}{c.reset}",
            f"{c.yellow}Net lines changed:{c.reset} {c.bold}{totals.net_lines}{c.reset}",
            f"{c.magenta}Total merges:{c.reset} {c.bold}{totals.merge_count}{c.reset}\n",
        ]
    )


# --- Commands ---


def show_repo_report(request, palette):
    try:
        stats = get_repo_stats(request.search_dir, request.year)
    except NotAGitRepositoryError:
        print(f"{palette.red}Error: Not in a git repository!{palette.reset}")
        return 1
    print(render_repo_report(stats, request.year, palette))
    return 0


def show_all_repos_summary(request, palette):
    c = palette
    print(render_all_header(request.year, request.search_dir, c))

    repos = list(find_git_repos(request.search_dir))
    if not repos:
        print(f"{c.red}No git repositories found!{c.reset}\n")
        return 1

    print(f"{c.green}Found {c.bold}{len(repos)}{c.reset}{c.green} git repositories{c.reset}\n")
    print(_rule(c))

    collected = []
    for index, repo in enumerate(repos, 1):
        try:
            stats = get_repo_stats(repo, request.year)
        except NotAGitRepositoryError as e:
            logger.debug("Skipping %s: %s", repo, e)
            print(render_repo_failure(repo, index, len(repos), c))
            continue
        collected.append(stats)
        print(render_repo_summary(stats, index, len(repos), c))

    print(render_grand_totals(aggregate_totals(collected), c))
    print(render_footer(c))
    return 0


def configure_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv=None):
    try:
        request = parse_request(argv)
    except UsageError as e:
        if argv is None:
            argv = sys.argv[1:]
        palette = load_palette(enabled="--no-color" not in argv)
        print(f"{palette.red}{e}{palette.reset}")
        print("Use --help for usage information")
        return 1

    if request is None:
        build_parser().print_help()
        return 0

    configure_logging(request.verbose)
    palette = load_palette(enabled=request.color)

    if request.mode == MODE_ALL:
        return show_all_repos_summary(request, palette)
    return show_repo_report(request, palette)


if __name__ == "__main__":
    sys.exit(main())
