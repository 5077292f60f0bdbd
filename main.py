#!/usr/bin/env python3
"""
Narrated Tour Agent: ウェブサイトの自動ナレーション付きツアー
エントリポイント
"""
import argparse
import asyncio
import logging
import os
import sys

import yaml

# Windowsのコンソールエンコーディング問題を解決
if sys.platform == 'win32':
    sys.stdout.reconfigure(encoding='utf-8')
    sys.stderr.reconfigure(encoding='utf-8')
    os.environ['PYTHONIOENCODING'] = 'utf-8'

from agent.config import BEDROCK_MODEL_ID
from browser.constants import NAVIGATION_TIMEOUT
from browser.models import action_to_dict
from tour.service import DemoService
from utilities.errors import DemoError, InvalidInput, SessionEnded, SessionFailed

logger = logging.getLogger(__name__)

QUIT_COMMANDS = ('quit', 'exit', 'q')


def load_tour_file(path: str) -> dict:
    """
    YAMLのツアー定義を読み込む

    例:
        main_url: https://example.com
        pages:
          - https://example.com/
          - https://example.com/about
    """
    with open(path, 'r', encoding='utf-8') as f:
        tour = yaml.safe_load(f) or {}
    if not isinstance(tour, dict):
        raise InvalidInput(f"Tour file must be a mapping: {path}")
    pages = tour.get('pages') or []
    main_url = tour.get('main_url') or (pages[0] if pages else None)
    if not main_url or not isinstance(pages, list) or not pages:
        raise InvalidInput(f"Tour file needs 'main_url' and a non-empty 'pages' list: {path}")
    return {'main_url': main_url, 'pages': pages}


def speak(text: str):
    print(f"\n🔊 {text}\n", flush=True)


async def listen(prompt: str = "コマンド> ") -> str:
    try:
        return (await asyncio.to_thread(input, prompt)).strip()
    except EOFError:
        return 'quit'


async def run_demo(service: DemoService, main_url: str, pages: list, pause: float, interactive: bool):
    session_id = await service.create_session(main_url, pages)
    try:
        info = service.start_tour(session_id)
        logger.info(f"Starting tour of {info['total_pages']} pages at {info['current_page']}")

        while True:
            visited = len(service.get_session(session_id).steps)
            result = await service.advance_tour(session_id)
            steps = service.get_session(session_id).steps
            if len(steps) > visited:
                speak(steps[-1].narration)
            if result['tour_complete']:
                break
            # 次のページに進む前にナレーションを聞き終える時間を取る
            await asyncio.sleep(pause)

        progress = service.get_tour_progress(session_id)
        print(f"✅ ツアー完了: {len(progress['steps'])}/{progress['total_pages']} ページ")

        if not interactive:
            return

        speak("The tour is complete. What would you like to do next?")
        while True:
            command = await listen()
            if command.lower() in QUIT_COMMANDS:
                break
            if not command:
                continue
            try:
                result = await service.interpret_command(session_id, command)
            except (SessionEnded, SessionFailed) as e:
                logger.error(f"Session stopped: {e}")
                break
            except DemoError as e:
                logger.error(f"Command failed: {e}")
                speak("Sorry, I had trouble processing that command. Please try again.")
                continue
            if result.action:
                logger.info(f"Action: {action_to_dict(result.action)}")
            speak(result.narration)
    finally:
        await service.close_session(session_id)


async def main():
    parser = argparse.ArgumentParser(description='Narrated website tour agent')
    parser.add_argument('--main-url', help='URL to open when the session starts')
    parser.add_argument('--pages', nargs='+', help='Page URLs to tour, in order')
    parser.add_argument('--tour', help='YAML tour file with main_url and pages')
    parser.add_argument('--script', metavar='URL', help='Print a generated tour script for URL as YAML and exit')
    parser.add_argument('--headful', action='store_true', help='Show browser')
    parser.add_argument('--pause', type=float, default=2.0, help='Seconds to wait between pages')
    parser.add_argument('--timeout', type=int, default=NAVIGATION_TIMEOUT, help='Navigation timeout (ms)')
    parser.add_argument('--interactive', action='store_true', help='Accept commands after the tour')
    parser.add_argument('--model-id', default=BEDROCK_MODEL_ID, help='Bedrock model id (empty = fallback narration)')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)-5s %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

    config = {
        'headful': args.headful,
        'navigation_timeout': args.timeout,
        'model_id': args.model_id,
    }

    async with DemoService(config) as service:
        if args.script:
            steps = await service.generate_tour_script(args.script)
            print(yaml.safe_dump(
                [{'action': action_to_dict(s.action), 'narration': s.narration, 'duration': s.duration} for s in steps],
                allow_unicode=True, default_flow_style=False, sort_keys=False,
            ))
            return

        if args.tour:
            tour = load_tour_file(args.tour)
            main_url, pages = tour['main_url'], tour['pages']
        else:
            pages = args.pages or []
            main_url = args.main_url or (pages[0] if pages else None)
        if not main_url or not pages:
            parser.error('--pages (or --tour) is required')

        await run_demo(service, main_url, pages, args.pause, args.interactive)


if __name__ == '__main__':
    asyncio.run(main())
