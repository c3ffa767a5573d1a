"""
Job Recommender CLI - Command line interface for the recommendation engine.

Usage:
    python -m job_recommender [command] [options]

Commands:
    ingest      Load job postings and merge duplicates
    parse       Parse a resume version into a skill profile
    score       Score a resume version against one job
    recommend   Show the best open jobs for a resume version
    feedback    Record interest in (or a pass on) a job
    retrain     Retrain scoring weights on the feedback log
    track       Track applications and change their status
    stale       List applications that went quiet
    generate    Generate a cover letter, tailoring hints or interview prep
    costs       Show analysis service usage and estimated cost
    config      Manage configuration

Examples:
    python -m job_recommender ingest --file jobs.json
    python -m job_recommender parse --resume-version v1 --file resume.pdf
    python -m job_recommender recommend --resume-version v1 --top 5
    python -m job_recommender track --job-id job_1a2b3c --resume-version v1 --status applied
"""

import argparse
import json
import logging
import sys

from job_recommender.analysis.results import InvocationKind
from job_recommender.core.exceptions import AmbiguousDuplicate, EngineError
from job_recommender.core.models import ApplicationStatus, FeedbackAction, MatchResult
from job_recommender.engine import RecommendationEngine
from job_recommender.integrations import GreenhouseSource, JobAggregator, JsonFileSource
from job_recommender.utils import Config


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Job Recommender - Explainable job recommendations that learn from your outcomes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--data-dir", "-d", help="Override storage.data_dir")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest job postings")
    ingest_parser.add_argument("--file", "-f", action="append", default=[], help="JSON file of postings (repeatable)")
    ingest_parser.add_argument("--greenhouse", action="store_true", help="Fetch configured Greenhouse boards")
    ingest_parser.add_argument("--limit", "-n", type=int, help="Max postings per source")
    ingest_parser.add_argument("--resolve", help="Settle a pending duplicate review by id")
    ingest_parser.add_argument("--merge-into", help="Canonical id to merge the reviewed posting into")

    # Parse command
    parse_parser = subparsers.add_parser("parse", help="Parse a resume into a skill profile")
    parse_parser.add_argument("--resume-version", "-r", required=True, help="Resume version id")
    parse_parser.add_argument("--file", "-f", required=True, help="Resume file (PDF, DOCX, TXT, MD) or skills JSON")

    # Score command
    score_parser = subparsers.add_parser("score", help="Score a resume version against a job")
    score_parser.add_argument("--resume-version", "-r", required=True, help="Resume version id")
    score_parser.add_argument("--job-id", "-j", required=True, help="Canonical job id")
    score_parser.add_argument("--json", action="store_true", help="Print the full result as JSON")

    # Recommend command
    recommend_parser = subparsers.add_parser("recommend", help="Top recommendations")
    recommend_parser.add_argument("--resume-version", "-r", required=True, help="Resume version id")
    recommend_parser.add_argument("--top", "-t", type=int, default=10, help="Show top N jobs")

    # Feedback command
    feedback_parser = subparsers.add_parser("feedback", help="Record feedback on a job")
    feedback_parser.add_argument("--job-id", "-j", required=True, help="Canonical job id")
    feedback_parser.add_argument("--action", "-a", required=True,
                                 choices=[FeedbackAction.INTERESTED.value, FeedbackAction.PASSED.value])
    feedback_parser.add_argument("--reason", help="Optional free-text reason")

    # Retrain command
    subparsers.add_parser("retrain", help="Retrain scoring weights")

    # Track command
    track_parser = subparsers.add_parser("track", help="Track applications")
    track_parser.add_argument("--job-id", "-j", help="Job to track")
    track_parser.add_argument("--resume-version", "-r", help="Resume version used")
    track_parser.add_argument("--cover-letter", help="Cover letter id used")
    track_parser.add_argument("--update", "-u", help="Application ID to update")
    track_parser.add_argument("--status", "-s", choices=[s.value for s in ApplicationStatus], help="Status to set")
    track_parser.add_argument("--note", help="Note stored with the status change")
    track_parser.add_argument("--list", "-l", action="store_true", help="List all applications")
    track_parser.add_argument("--history", help="Show the status history of an application")
    track_parser.add_argument("--remove", help="Stop tracking an application")
    track_parser.add_argument("--stats", action="store_true", help="Show statistics")
    track_parser.add_argument("--export", "-e", help="Export to CSV file")

    # Stale command
    subparsers.add_parser("stale", help="List stale applications")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate application material")
    gen_parser.add_argument("--application-id", "-a", required=True, action="append",
                            help="Application id (repeat to queue a batch)")
    gen_parser.add_argument("--kind", "-k", default="cover-letter",
                            choices=["cover-letter", "tailor", "interview-prep"])
    gen_parser.add_argument("--tone", default="professional", help="Cover letter tone")
    gen_parser.add_argument("--output", "-o", help="Write the result to this file")

    # Costs command
    costs_parser = subparsers.add_parser("costs", help="Analysis usage and cost")
    costs_parser.add_argument("--retry-failed", action="store_true", help="Replay failed requests first")

    # Config command
    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("--show", action="store_true", help="Show current config")
    config_parser.add_argument("--set", nargs=2, metavar=("KEY", "VALUE"), help="Set a config value")
    config_parser.add_argument("--set-api-key", nargs=2, metavar=("PROVIDER", "KEY"), help="Set API key")
    config_parser.add_argument("--init", action="store_true", help="Initialize default config")

    # Parse arguments
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load configuration
    config = Config(args.config)

    commands = {
        "ingest": cmd_ingest,
        "parse": cmd_parse,
        "score": cmd_score,
        "recommend": cmd_recommend,
        "feedback": cmd_feedback,
        "retrain": cmd_retrain,
        "track": cmd_track,
        "stale": cmd_stale,
        "generate": cmd_generate,
        "costs": cmd_costs,
    }

    # Execute command
    try:
        if args.command == "config":
            cmd_config(args, config)
            return

        engine = RecommendationEngine(config, data_dir=args.data_dir)
        try:
            commands[args.command](args, engine)
        finally:
            engine.close()

    except KeyboardInterrupt:
        print("\n\nOperation cancelled.")
        sys.exit(1)
    except EngineError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"\nError: {e}")
        sys.exit(1)


def _print_match(index: int, result: MatchResult, engine: RecommendationEngine) -> None:
    job = engine.job_store.find(result.job_id)
    title = f"{job.title} @ {job.company}" if job else result.job_id

    print(f"\n{index}. {title}")
    if job:
        print(f"   Location: {job.location or '-'} ({job.remote_mode.value})")
    print(f"   📈 Score: {result.score} (weights v{result.weight_version})")
    if result.matching_skills:
        print(f"   ✅ Matching: {', '.join(result.matching_skills[:5])}")
    if result.explanation.experience_gaps:
        print(f"   ➖ Experience gaps: {', '.join(result.explanation.experience_gaps[:3])}")
    if result.missing_skills:
        print(f"   ❌ Missing: {', '.join(result.missing_skills[:3])}")
    print(f"   ID: {result.job_id}")


def cmd_ingest(args, engine: RecommendationEngine):
    """Execute ingest command."""
    if args.resolve:
        outcome = engine.resolve_duplicate(args.resolve, args.merge_into)
        print(f"✅ Review {args.resolve}: {outcome.action} as {outcome.canonical_id}")
        return

    aggregator = JobAggregator([JsonFileSource(path) for path in args.file])

    if args.greenhouse:
        boards = engine.config.get("sources.greenhouse_boards", [])
        if not boards:
            print("No Greenhouse boards configured (sources.greenhouse_boards)")
        else:
            aggregator.add_source(GreenhouseSource(boards, engine.config.get("sources.known_skills", [])))

    if not aggregator.sources:
        print("Error: Provide --file or --greenhouse")
        return

    print("🔍 Fetching postings...")
    fetched, report = engine.fetch_and_ingest(aggregator, args.limit)

    for source, error in fetched.errors.items():
        print(f"   ⚠️  {source} failed: {error}")

    print(f"\n✅ {len(fetched.jobs)} postings: {len(report.created)} new, "
          f"{len(report.merged)} merged, {len(report.ambiguous)} held for review")

    for ambiguous in report.ambiguous:
        print(f"   ? {ambiguous.candidate_key} resembles {ambiguous.existing_id} "
              f"({ambiguous.similarity:.2f}) - review id {ambiguous.review_id}")
    for error in report.errors:
        print(f"   ❌ {error}")


def cmd_parse(args, engine: RecommendationEngine):
    """Execute parse command."""
    print(f"📋 Parsing {args.file}...")

    if args.file.lower().endswith(".json"):
        profile = engine.load_profile(args.resume_version, args.file)
    else:
        profile = engine.parse_resume(args.resume_version, file_path=args.file)

    print(f"\nResume version: {profile.resume_version_id}")
    print(f"Experience: {profile.total_years:.1f} years")
    print(f"\nSkills ({len(profile.skills)}):")
    for skill in profile.skills:
        since = f", last used {skill.years_since_used:g}y ago" if skill.years_since_used else ""
        print(f"  - {skill.name} ({skill.level.name}, {skill.years:g}y{since})")


def cmd_score(args, engine: RecommendationEngine):
    """Execute score command."""
    result = engine.score(args.resume_version, args.job_id)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return

    _print_match(1, result, engine)
    print("\n   Sub-scores:")
    for feature, value in result.subscores.items():
        print(f"     {feature:<20} {value:.2f}")

    if result.explanation.top_contributors:
        print("   Helped by: " + ", ".join(c.feature for c in result.explanation.top_contributors))
    if result.explanation.top_detractors:
        print("   Held back by: " + ", ".join(c.feature for c in result.explanation.top_detractors))


def cmd_recommend(args, engine: RecommendationEngine):
    """Execute recommend command."""
    results = engine.top_recommendations(args.resume_version, args.top)

    if not results:
        print("No open jobs. Run 'ingest' first.")
        return

    print(f"\n🎯 Top {len(results)} recommendations for {args.resume_version}:")
    print("-" * 80)
    for i, result in enumerate(results, 1):
        _print_match(i, result, engine)


def cmd_feedback(args, engine: RecommendationEngine):
    """Execute feedback command."""
    signal = engine.record_feedback(args.job_id, FeedbackAction(args.action), args.reason)
    print(f"✅ Recorded '{signal.action.value}' on {signal.job_id}")
    print(f"   Weights in use: v{engine.current_weights().version}")


def cmd_retrain(args, engine: RecommendationEngine):
    """Execute retrain command."""
    before = engine.current_weights()
    after = engine.retrain()

    if after.version == before.version:
        print(f"⚠️  Not enough labeled feedback; keeping weights v{before.version}")
    else:
        print(f"✅ Weights v{before.version} -> v{after.version}")

    for feature, weight in after.weights.items():
        print(f"   {feature:<20} {weight:.3f}")


def cmd_track(args, engine: RecommendationEngine):
    """Execute track command."""
    tracker = engine.tracker

    if args.stats:
        stats = tracker.get_statistics()
        print("\n📊 Application Statistics")
        print("=" * 40)
        print(f"Total Applications: {stats['total']}")
        print(f"Active Applications: {stats.get('active_applications', 0)}")
        print(f"Stale Applications: {stats['stale']}")
        print(f"Response Rate: {stats['response_rate']:.1f}%")
        print(f"Interview Rate: {stats['interview_rate']:.1f}%")
        print("\nBy Status:")
        for status, count in stats.get('by_status', {}).items():
            print(f"  {status.replace('_', ' ').title()}: {count}")

    elif args.update and args.status:
        result = engine.transition(args.update, ApplicationStatus(args.status), args.note)
        print(f"✅ {args.update}: {result.previous.value} -> {result.entry.status.value}")

    elif args.job_id and args.resume_version:
        status = ApplicationStatus(args.status) if args.status else ApplicationStatus.SAVED
        app = engine.track(args.job_id, args.resume_version, status, args.cover_letter, args.note)
        print(f"✅ Tracking {app.application_id} ({app.status.value})")

    elif args.history:
        for entry in engine.history(args.history):
            note = f" - {entry.note}" if entry.note else ""
            print(f"{entry.sequence:3}. {entry.timestamp:%Y-%m-%d %H:%M} {entry.status.value}{note}")

    elif args.remove:
        if engine.remove_application(args.remove):
            print(f"✅ Removed {args.remove}")
        else:
            print(f"❌ Application {args.remove} not found")

    elif args.export:
        path = tracker.export_to_csv(args.export)
        print(f"✅ Exported to {path}")

    elif args.list or args.status:
        if args.status:
            applications = tracker.get_applications_by_status(ApplicationStatus(args.status))
        else:
            applications = tracker.get_all_applications()

        print(f"\n📋 Applications ({len(applications)} total)\n")
        print("-" * 80)

        for app in applications:
            job = engine.job_store.find(app.job_id)
            title = f"{job.company} - {job.title}" if job else app.job_id
            print(f"\n{title}")
            print(f"   Status: {app.status.value.title()} | Resume: {app.resume_version_id}")
            print(f"   Last activity: {app.last_activity:%Y-%m-%d}")
            print(f"   ID: {app.application_id}")

    else:
        # Default: show summary
        stats = tracker.get_statistics()
        print(f"\n📋 Tracking {stats['total']} applications")
        print(f"   Run 'track --list' to see all")
        print(f"   Run 'track --stats' for statistics")


def cmd_stale(args, engine: RecommendationEngine):
    """Execute stale command."""
    stale = engine.stale_applications()

    if not stale:
        print("✅ No stale applications")
        return

    print(f"\n⏰ {len(stale)} stale application(s):\n")
    for app in stale:
        job = engine.job_store.find(app.job_id)
        title = f"{job.company} - {job.title}" if job else app.job_id
        days = engine.stale_detector.days_idle(app)
        print(f"  {title}: applied, idle {days:.0f} days ({app.application_id})")


GENERATION_KINDS = {
    "cover-letter": InvocationKind.GENERATE_COVER_LETTER,
    "tailor": InvocationKind.TAILOR_RESUME,
    "interview-prep": InvocationKind.INTERVIEW_PREP,
}


def _format_result(result) -> str:
    if result.kind == InvocationKind.GENERATE_COVER_LETTER:
        return result.text
    if result.kind == InvocationKind.TAILOR_RESUME:
        lines = [f"- {s}" for s in result.suggestions]
        if result.keywords:
            lines.append(f"\nKeywords: {', '.join(result.keywords)}")
        return "\n".join(lines)
    lines = ["Questions:"] + [f"- {q}" for q in result.questions]
    if result.talking_points:
        lines += ["", "Talking points:"] + [f"- {p}" for p in result.talking_points]
    return "\n".join(lines)


def cmd_generate(args, engine: RecommendationEngine):
    """Execute generate command."""
    kind = GENERATION_KINDS[args.kind]
    print(f"📝 Generating {args.kind}...")

    if len(args.application_id) == 1:
        application_id = args.application_id[0]
        if kind == InvocationKind.GENERATE_COVER_LETTER:
            outcomes = {application_id: engine.generate_cover_letter(application_id, args.tone)}
        elif kind == InvocationKind.TAILOR_RESUME:
            outcomes = {application_id: engine.tailor_resume(application_id)}
        else:
            outcomes = {application_id: engine.interview_prep(application_id)}
    else:
        outcomes = engine.generate_many(kind, args.application_id)

    rendered = []
    for application_id, outcome in outcomes.items():
        if outcome is None:
            print(f"   ⚠️  {application_id} is no longer active; result discarded")
        elif isinstance(outcome, Exception):
            print(f"   ❌ {application_id}: {outcome}")
        else:
            rendered.append(f"# {application_id}\n\n{_format_result(outcome)}")

    if not rendered:
        return

    text = "\n\n".join(rendered)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(text)
        print(f"\n💾 Saved to {args.output}")
    else:
        print(f"\n{text}")


def cmd_costs(args, engine: RecommendationEngine):
    """Execute costs command."""
    if args.retry_failed:
        outcomes = engine.retry_failed_analysis()
        failed = sum(1 for o in outcomes if isinstance(o, Exception))
        print(f"🔁 Replayed {len(outcomes)} request(s), {failed} still failing")

    summary = engine.cost_summary()
    print("\n💰 Analysis Usage")
    print("=" * 40)
    print(f"External calls: {summary['total_calls']}")
    print(f"Cache hits: {summary['total_cache_hits']}")
    print(f"Estimated cost: ${summary['total_estimated_cost']:.4f}")
    for kind, row in summary["by_kind"].items():
        print(f"\n{kind}:")
        print(f"  calls {row['calls']} (failed {row['failures']}), cache hits {row['cache_hits']}")
        print(f"  tokens in/out {row['input_tokens']}/{row['output_tokens']}, ${row['estimated_cost']:.4f}")


def cmd_config(args, config: Config):
    """Execute config command."""
    if args.init:
        config.save()
        print(f"✅ Created config at: {config.config_path}")

    elif args.show:
        print("\n📋 Current Configuration\n")
        config.print_config()

    elif args.set:
        key, value = args.set
        # Try to parse as JSON for complex values
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        config.set(key, value)
        config.save()
        print(f"✅ Set {key} = {value}")

    elif args.set_api_key:
        provider, key = args.set_api_key
        config.set_api_key(provider, key)
        print(f"✅ Set API key for {provider}")

    else:
        print("Use --show, --set, --set-api-key, or --init")


if __name__ == "__main__":
    main()
