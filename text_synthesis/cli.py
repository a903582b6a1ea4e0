"""Command-line interface for the text synthesis queue."""

import json
import logging
import sys
import time
from datetime import datetime

from .config import QueueConfig
from .jobs import JobManager, JobStatus, BulkSelector, SynthesisQueueError, ValidationError

COMMANDS = ('enqueue', 'list', 'run', 'delete', 'process', 'schedule', 'stats', 'logs', 'recover')

# Options that consume the following argument
VALUE_OPTIONS = {'--text', '--ssml', '--request', '--page', '--field', '--lang',
                 '--voice', '--encoding', '--status', '--db', '--limit',
                 '--older-than'}


def print_usage():
    print("""
Usage: text-synthesis <command> [options]

Commands:
    enqueue             Add a synthesis job to the queue
    list                List jobs in creation order
    run <id>            Process a job now (re-runs completed and failed jobs)
    delete <target>     Delete a job by id, or: all, pending, completed, error
    process             Run the queue once (batch + retention cleanup)
    schedule            Run the queue every cronSchedule seconds until stopped
    stats               Show job counts per status
    logs <id>           Show the log of a job
    recover             Return jobs stuck in processing to waiting

Enqueue options:
    --text <text>       Plain text input
    --ssml <markup>     SSML input (<speak>...</speak>)
    --request <json>    Complete request payload as JSON ('-' reads stdin)
    --page <ref>        Host page reference
    --field <ref>       Host field reference
    --lang <code>       Voice language code (e.g. en-US)
    --voice <name>      Voice name (e.g. en-US-Wavenet-D)
    --encoding <enc>    Audio encoding (MP3, LINEAR16, OGG_OPUS, ...)

General options:
    --status <status>   Filter 'list' by waiting, processing, completed or error
    --limit <n>         Number of log entries for 'logs' (default: 20)
    --older-than <s>    Seconds a job must be processing for 'recover'
                        (default: twice the request timeout)
    --db <path>         Job database (default: TEXT_SYNTHESIS_DB_PATH or ~/.text-synthesis/jobs.db)
    --debug             Verbose logging
    -h, --help          Show this help

Configuration is read from TEXT_SYNTHESIS_* environment variables
(ENDPOINT, API_KEY, CRON_SCHEDULE, CRON_PARALLEL_CALLS, DELETE_COMPLETED,
DELETE_COMPLETED_AFTER, REQUEST_TIMEOUT).
""")


def parse_args(argv):
    """Split argv into positional arguments, option values and flags."""
    positional, options, flags = [], {}, set()
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in VALUE_OPTIONS:
            if i + 1 >= len(argv):
                raise ValueError(f"Option {arg} requires a value")
            options[arg] = argv[i + 1]
            i += 1
        elif arg.startswith('-') and arg != '-':
            flags.add(arg)
        else:
            positional.append(arg)
        i += 1
    return positional, options, flags


def format_time(timestamp) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def build_request(options) -> dict:
    """Request payload from the enqueue options."""
    if '--request' in options:
        raw = sys.stdin.read() if options['--request'] == '-' else options['--request']
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"--request is not valid JSON: {e}") from e

    request = {'input': {}}
    if '--text' in options:
        request['input']['text'] = options['--text']
    if '--ssml' in options:
        request['input']['ssml'] = options['--ssml']

    voice = {}
    if '--lang' in options:
        voice['languageCode'] = options['--lang']
    if '--voice' in options:
        voice['name'] = options['--voice']
    if voice:
        request['voice'] = voice

    if '--encoding' in options:
        request['audioConfig'] = {'audioEncoding': options['--encoding'].upper()}

    return request


def print_jobs(jobs):
    if not jobs:
        print("No jobs in queue.")
        return

    print(f"{'ID':>6}  {'Page':<12} {'Field':<12} {'Mode':<5} {'Status':<11} {'Created':<19}  {'Completed':<19}")
    for job in jobs:
        print(
            f"#{job.id:>5}  {job.page_ref:<12} {job.field_ref:<12} {job.request.mode:<5} "
            f"{job.status.value:<11} {format_time(job.created_at):<19}  {format_time(job.completed_at):<19}"
        )
        details = job.request.describe()
        if details:
            print(f"        {details}")
        if job.status == JobStatus.ERROR:
            print(f"        {job.format_status_message()}")


def main(argv=None):
    """Main entry point for the text-synthesis CLI tool."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or '-h' in argv or '--help' in argv:
        print_usage()
        return 0

    try:
        positional, options, flags = parse_args(argv)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    if not positional or positional[0] not in COMMANDS:
        print(f"Error: Unknown command: {positional[0] if positional else ''}")
        print_usage()
        return 1

    command, args = positional[0], positional[1:]

    logging.basicConfig(
        level=logging.DEBUG if '--debug' in flags else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = QueueConfig.from_env()
        if '--db' in options:
            config.db_path = options['--db']
        manager = JobManager(config)
    except SynthesisQueueError as e:
        print(f"Error: {e}")
        return 1

    try:
        return run_command(manager, command, args, options)
    except SynthesisQueueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        manager.close()


def run_command(manager: JobManager, command: str, args, options) -> int:
    if command == 'enqueue':
        if '--page' not in options or '--field' not in options:
            print("Error: enqueue requires --page and --field")
            return 1
        job_id = manager.submit_job(build_request(options), options['--page'], options['--field'])
        print(f"Job #{job_id} queued")
        return 0

    if command == 'list':
        status = options.get('--status')
        if status is not None and status not in {s.value for s in JobStatus}:
            print(f"Error: Unknown status: {status}")
            return 1
        print_jobs(manager.get_all_jobs(JobStatus(status) if status else None))
        last_run = manager.last_run
        print(f"\nLast run: {format_time(last_run) if last_run else 'Never'}")
        print(manager.describe_retention())
        return 0

    if command == 'stats':
        for status, count in manager.get_statistics().items():
            print(f"{status:<11} {count}")
        return 0

    if command == 'process':
        result = manager.run_queue()
        if not result.ok:
            print(f"Queue run {result.status.value}: {result.error or 'another run is in progress'}")
            return 1
        print(
            f"{len(result.batch.completed)} completed, {len(result.batch.failed)} failed, "
            f"{result.swept} completed job(s) cleaned up"
        )
        return 0

    if command == 'schedule':
        print(f"Running queue every {manager.config.interval_seconds}s (Ctrl+C to stop)")
        manager.create_scheduler().run_forever()
        return 0

    if command == 'recover':
        older_than = None
        if '--older-than' in options:
            try:
                older_than = float(options['--older-than'])
            except ValueError:
                print("Error: --older-than must be a number")
                return 1
        result = manager.recover_stalled_jobs(older_than)
        print(result.message)
        return 0 if result else 1

    # Commands below take a single target argument
    if len(args) != 1:
        print(f"Error: {command} requires exactly one argument")
        return 1
    target = args[0]

    if command == 'delete':
        if target in {s.value for s in BulkSelector}:
            result = manager.delete_jobs(target)
        elif target.isdigit():
            result = manager.delete_job(int(target))
        else:
            print(f"Error: Invalid delete target: {target}")
            return 1
        print(result.message)
        return 0 if result else 1

    if not target.lstrip('#').isdigit():
        print(f"Error: Invalid job id: {target}")
        return 1
    job_id = int(target.lstrip('#'))

    if command == 'run':
        started = time.time()
        result = manager.run_job(job_id)
        print(f"{result.message} ({time.time() - started:.1f}s)")
        return 0 if result else 1

    # logs
    try:
        limit = int(options.get('--limit', '20'))
    except ValueError:
        print("Error: --limit must be a number")
        return 1
    for entry in reversed(manager.get_job_logs(job_id, limit=limit)):
        print(f"{format_time(entry['timestamp'])} [{entry['level']}] {entry['message']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
