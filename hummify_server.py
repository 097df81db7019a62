#!/usr/bin/env python3
"""Hummify: guess the song from ever-longer preview snippets.

Serves the game page and a small JSON API backed by Deezer, iTunes and
(optionally) Last.fm.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from flask import Flask, jsonify, render_template_string, request

from catalogs import CatalogError, ITunesClient, Track
from config import Settings as AppSettings, get_settings
from game import GameStateError, INTERVALS, MAX_GUESSES, SessionNotFound, SessionStore
from matching import check_guess
from song_picker import SongPicker

try:
    from rich.logging import RichHandler

    HAVE_RICH = True
except Exception:  # pragma: no cover - optional dependency
    HAVE_RICH = False

LOG = logging.getLogger("hummify")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}

# ========== HTML TEMPLATE ==========

INDEX_HTML = '''
<!doctype html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <title>Hummify</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;600;800&display=swap" rel="stylesheet" />
  <style>
    :root { --bg: #0b0b10; --surface: #17171f; --border: #2c2c38; --primary: #1db954; --text: #f2f2f2; --muted: #8a8a99; --ok: #4ade80; --bad: #f87171; }
    * { box-sizing: border-box; }
    body { margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center; font-family: 'Inter', sans-serif; color: var(--text); background: linear-gradient(180deg, var(--bg) 0%, #000 100%); padding: 16px; }
    .wrap { width: 100%; max-width: 36rem; }
    h1 { font-size: 3rem; font-weight: 800; text-align: center; margin: 0 0 24px; letter-spacing: -1px; }
    h1 span { color: var(--primary); }
    .card { background: var(--surface); border: 1px solid var(--border); border-radius: 18px; padding: 24px; box-shadow: 0 20px 50px #0008; }
    .bar { display: flex; justify-content: space-between; padding: 8px 16px; border: 1px solid var(--border); border-radius: 10px; margin-bottom: 20px; color: var(--muted); font-size: 1.1rem; }
    .bar b { color: var(--text); }
    .interval { text-align: center; color: var(--primary); font-weight: 600; margin: 0 0 10px; min-height: 1.4em; }
    .stage { display: flex; align-items: center; padding: 8px 16px; margin-bottom: 8px; border: 1px solid var(--border); border-radius: 10px; }
    .stage.current { border-color: var(--primary); background: #1db95418; }
    .stage .name { width: 5rem; font-weight: 700; font-size: .9rem; color: var(--muted); }
    .stage.current .name { color: var(--primary); }
    .stage .len { width: 4rem; font-size: .8rem; color: var(--muted); }
    .stage .guess { flex: 1; }
    .stage.correct .guess, .stage.correct .mark { color: var(--ok); }
    .stage.incorrect .guess, .stage.incorrect .mark, .stage.skipped .mark { color: var(--bad); }
    .stage .mark { font-weight: 700; margin-left: 8px; }
    .input-wrap { position: relative; margin: 16px 0; }
    input[type="text"] { width: 100%; padding: 12px 16px; border-radius: 12px; border: 1px solid var(--border); background: var(--bg); color: var(--text); font-size: 1.05rem; outline: none; }
    input[type="text"]:focus { border-color: var(--primary); }
    .suggestions { position: absolute; left: 0; right: 0; top: 100%; margin-top: 6px; background: var(--surface); border: 1px solid var(--border); border-radius: 8px; max-height: 15rem; overflow-y: auto; z-index: 20; }
    .suggestions button { display: block; width: 100%; text-align: left; background: none; border: none; color: var(--text); padding: 8px 16px; font-size: 1rem; cursor: pointer; }
    .suggestions button:hover { background: #2a2a35; }
    .controls { display: flex; gap: 8px; }
    .btn { flex: 1; border: none; border-radius: 12px; padding: 12px; font-size: 1.05rem; font-weight: 700; background: var(--primary); color: #000; cursor: pointer; }
    .btn:disabled { opacity: .4; cursor: default; }
    .modal { position: fixed; inset: 0; display: none; align-items: center; justify-content: center; background: #0009; z-index: 50; }
    .modal.open { display: flex; }
    .modal .box { background: var(--surface); border: 1px solid var(--border); border-radius: 18px; padding: 32px; max-width: 26rem; width: 100%; text-align: center; }
    .modal h2.ok { color: var(--ok); }
    .modal h2.bad { color: var(--bad); }
    .modal img { width: 120px; height: 120px; border-radius: 12px; object-fit: cover; margin-bottom: 12px; }
    .answer { color: var(--primary); font-weight: 600; font-size: 1.2rem; margin-bottom: 24px; }
    .hidden { display: none; }
  </style>
</head>
<body>
  <div class="wrap">
    <h1><span>Humm</span>ify</h1>
    <div class="card">
      <div class="bar"><span>Round: <b id="round">1</b></span><span>Score: <b id="score">0</b></span></div>
      <p class="interval" id="interval"></p>
      <div id="stages">
        {% for seconds in intervals %}
        <div class="stage" data-stage="{{ loop.index0 }}">
          <span class="name">Stage {{ loop.index }}</span>
          <span class="len">{{ seconds }}s</span>
          <span class="guess"></span>
          <span class="mark"></span>
        </div>
        {% endfor %}
      </div>
      <button class="btn" id="start">Start New Round</button>
      <form id="play" class="hidden" autocomplete="off">
        <div class="input-wrap">
          <input type="text" id="guess" placeholder="Know it? Search for the title" />
          <div class="suggestions hidden" id="suggestions"></div>
        </div>
        <div class="controls">
          <button class="btn" type="submit" id="submit">Submit</button>
          <button class="btn" type="button" id="replay">Replay</button>
          <button class="btn" type="button" id="longer">Play Longer</button>
        </div>
      </form>
    </div>
  </div>
  <div class="modal" id="modal">
    <div class="box">
      <h2 id="verdict"></h2>
      <img id="art" class="hidden" alt="album art" />
      <p>The correct answer was:</p>
      <p class="answer" id="answer"></p>
      <button class="btn" id="next">Next Song</button>
    </div>
  </div>
  <script>
    const MAX_LOAD_ATTEMPTS = {{ max_load_attempts }};
    const SUGGEST_DEBOUNCE_MS = 200;
    const audio = new Audio();
    audio.preload = 'auto';
    let state = null;
    let stopTimer = null;
    let loadAttempts = 0;

    const $ = (id) => document.getElementById(id);

    async function api(path, options = {}) {
      const res = await fetch(path, Object.assign({ headers: { 'Content-Type': 'application/json' } }, options));
      const data = await res.json();
      if (!res.ok) throw new Error(data.error || ('HTTP ' + res.status));
      return data;
    }

    function render() {
      $('round').textContent = state.round;
      $('score').textContent = state.score;
      const inRound = state.phase === 'playing' || state.phase === 'guessing';
      $('interval').textContent = inRound ? 'Interval: ' + state.interval + 's' : '';
      document.querySelectorAll('.stage').forEach((row) => {
        const idx = Number(row.dataset.stage);
        const status = state.statuses[idx];
        row.className = 'stage' + (status ? ' ' + status : '') + (inRound && idx === state.stage ? ' current' : '');
        row.querySelector('.guess').textContent = state.guesses[idx];
        row.querySelector('.mark').textContent = status === 'correct' ? '✔' : (status ? '✖' : '');
      });
      $('start').classList.toggle('hidden', inRound || state.phase === 'revealed');
      $('play').classList.toggle('hidden', !inRound);
      $('longer').disabled = !state.canPlayLonger;
      if (state.phase === 'revealed' && state.result) {
        const ok = state.result.correct;
        $('verdict').textContent = ok ? 'Correct!' : 'Out of Guesses!';
        $('verdict').className = ok ? 'ok' : 'bad';
        $('answer').textContent = (state.result.actualTitle || '-') + ' - ' + (state.result.actualArtist || '-');
        const art = state.song && state.song.albumArt;
        $('art').classList.toggle('hidden', !art);
        if (art) $('art').src = art;
        $('modal').classList.add('open');
      } else {
        $('modal').classList.remove('open');
      }
    }

    function playSnippet() {
      clearTimeout(stopTimer);
      audio.pause();
      audio.currentTime = 0;
      const seconds = state.interval;
      audio.play().catch(() => {});
      stopTimer = setTimeout(async () => {
        audio.pause();
        if (state.phase === 'playing') {
          state = await api('/api/game/' + state.id + '/played', { method: 'POST' });
          render();
        }
      }, seconds * 1000);
    }

    async function loadRound() {
      try {
        state = await api('/api/game/' + state.id + '/start', { method: 'POST' });
      } catch (err) {
        alert('Failed to start game after several attempts. Please try again.');
        return;
      }
      audio.src = state.song.previewUrl;
      audio.load();
    }

    audio.addEventListener('canplaythrough', () => {
      if (state && state.phase === 'playing' && state.stage === 0 && loadAttempts > 0) {
        loadAttempts = 0;
        render();
        playSnippet();
      }
    });
    audio.addEventListener('error', () => {
      if (!state || !state.song) return;
      // Only a fresh round can swap its song.
      if (state.stage !== 0 || state.statuses.some(Boolean)) return;
      if (loadAttempts < MAX_LOAD_ATTEMPTS) {
        loadAttempts += 1;
        loadRound();
      } else {
        loadAttempts = 0;
        alert('Failed to load a playable song after several attempts. Please try again.');
      }
    });

    $('start').addEventListener('click', () => { loadAttempts = 1; loadRound(); });
    $('replay').addEventListener('click', async () => {
      state = await api('/api/game/' + state.id + '/replay', { method: 'POST' });
      render();
      playSnippet();
    });
    $('longer').addEventListener('click', async () => {
      state = await api('/api/game/' + state.id + '/longer', { method: 'POST' });
      render();
      playSnippet();
    });
    $('play').addEventListener('submit', async (e) => {
      e.preventDefault();
      const guess = $('guess').value;
      $('suggestions').classList.add('hidden');
      state = await api('/api/game/' + state.id + '/guess', { method: 'POST', body: JSON.stringify({ guess }) });
      $('guess').value = '';
      render();
      if (state.phase === 'playing') setTimeout(playSnippet, 200);
      else { clearTimeout(stopTimer); audio.pause(); }
    });
    $('next').addEventListener('click', async () => {
      audio.pause();
      state = await api('/api/game/' + state.id + '/next', { method: 'POST' });
      render();
    });

    let debounce = null;
    let controller = null;
    $('guess').addEventListener('input', () => {
      const term = $('guess').value;
      clearTimeout(debounce);
      if (controller) controller.abort();
      if (!term) { $('suggestions').classList.add('hidden'); return; }
      debounce = setTimeout(async () => {
        controller = new AbortController();
        try {
          const res = await fetch('/api/suggest?term=' + encodeURIComponent(term), { signal: controller.signal });
          const data = await res.json();
          const box = $('suggestions');
          box.innerHTML = '';
          (data.suggestions || []).forEach((text) => {
            const btn = document.createElement('button');
            btn.type = 'button';
            btn.textContent = text;
            btn.addEventListener('click', () => { $('guess').value = text; box.classList.add('hidden'); $('guess').focus(); });
            box.appendChild(btn);
          });
          box.classList.toggle('hidden', !(data.suggestions || []).length);
        } catch (err) {
          if (err.name !== 'AbortError') $('suggestions').classList.add('hidden');
        }
      }, SUGGEST_DEBOUNCE_MS);
    });
    document.addEventListener('mousedown', (e) => {
      if (!e.target.closest('.input-wrap')) $('suggestions').classList.add('hidden');
    });

    api('/api/game', { method: 'POST' }).then((data) => { state = data; render(); });
  </script>
</body>
</html>
'''


def configure_logging(settings: AppSettings, verbose: bool, debug: bool) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if verbose and not debug:
        level = logging.INFO
    if debug:
        level = logging.DEBUG

    handlers: List[logging.Handler] = []
    if HAVE_RICH:
        handlers.append(RichHandler(rich_tracebacks=False, markup=False))
    else:  # pragma: no cover - fallback path
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(levelname)s: %(message)s")
        handler.setFormatter(formatter)
        handlers.append(handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # urllib3 logs every retry at WARNING; keep it out of the game log unless debugging.
    logging.getLogger("urllib3").setLevel(logging.DEBUG if debug else logging.ERROR)


def error_response(message: str, status: int):
    return jsonify({"error": message}), status


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    picker: Optional[SongPicker] = None,
    itunes: Optional[ITunesClient] = None,
    store: Optional[SessionStore] = None,
) -> Flask:
    settings = settings or get_settings()
    itunes = itunes or ITunesClient.from_settings(settings)
    picker = picker or SongPicker.from_settings(settings, itunes=itunes)
    store = store or SessionStore(ttl=settings.session_ttl)

    app = Flask(__name__)
    app.config["HUMMIFY_SETTINGS"] = settings
    app.extensions["hummify"] = {"picker": picker, "itunes": itunes, "store": store}

    def pick_for_round() -> Optional[Track]:
        for attempt in range(1, settings.round_start_attempts + 1):
            song = picker.pick_song()
            if song is not None:
                return song
            LOG.info("Song pick attempt %d/%d came back empty", attempt, settings.round_start_attempts)
        return None

    @app.after_request
    def add_no_cache_headers(response):
        if request.path.startswith("/api/"):
            for header, value in NO_CACHE_HEADERS.items():
                response.headers[header] = value
        return response

    @app.errorhandler(SessionNotFound)
    def handle_missing_session(exc):
        return error_response("Game session not found or expired", 404)

    @app.errorhandler(GameStateError)
    def handle_state_error(exc):
        return error_response(str(exc), 409)

    @app.route("/")
    def index():
        return render_template_string(
            INDEX_HTML,
            intervals=INTERVALS,
            max_load_attempts=settings.round_start_attempts * 10,
        )

    @app.route("/api/health")
    def health():
        return jsonify({"ok": True, "sessions": len(store), **picker.stats()})

    @app.route("/api/song")
    def song():
        try:
            track = picker.pick_song()
        except Exception as exc:  # pylint: disable=broad-except
            LOG.exception("Error fetching song: %s", exc)
            return error_response("Failed to fetch song", 500)
        if track is None:
            return error_response("No valid songs found after multiple attempts", 503)
        return jsonify(track.to_record())

    @app.route("/api/check", methods=["POST"])
    def check():
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        title = payload.get("title")
        artist = payload.get("artist")
        if not isinstance(title, str) or not isinstance(artist, str) or not title.strip():
            return error_response("Both 'title' and 'artist' are required", 400)
        guess = payload.get("guess")
        if not isinstance(guess, str):
            return error_response("'guess' must be a string", 400)
        result = check_guess(guess, title, artist, settings.guess_match_threshold)
        return jsonify(result.to_record())

    @app.route("/api/suggest")
    def suggest():
        term = request.args.get("term", "")
        try:
            suggestions = itunes.suggest(term, settings.suggestion_limit, settings.suggestion_fetch_limit)
        except CatalogError as exc:
            LOG.warning("Suggestion lookup failed for %r: %s", term, exc)
            suggestions = []
        return jsonify({"suggestions": suggestions})

    @app.route("/api/game", methods=["POST"])
    def new_game():
        session = store.create()
        LOG.info("Created game session %s", session.id)
        return jsonify(session.snapshot()), 201

    @app.route("/api/game/<session_id>")
    def game_state(session_id: str):
        session = store.get(session_id)
        return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/start", methods=["POST"])
    def start_round(session_id: str):
        session = store.get(session_id)
        with session.lock:
            session.ensure_can_start()
        # Pick outside the lock; start_round re-checks the phase.
        track = pick_for_round()
        if track is None:
            return error_response("No valid songs found after multiple attempts", 503)
        with session.lock:
            session.start_round(track)
            return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/played", methods=["POST"])
    def snippet_played(session_id: str):
        session = store.get(session_id)
        with session.lock:
            session.snippet_finished()
            return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/replay", methods=["POST"])
    def replay(session_id: str):
        session = store.get(session_id)
        with session.lock:
            session.replay()
            return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/longer", methods=["POST"])
    def play_longer(session_id: str):
        session = store.get(session_id)
        with session.lock:
            session.play_longer()
            return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/guess", methods=["POST"])
    def guess(session_id: str):
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        text = payload.get("guess")
        if not isinstance(text, str):
            return error_response("'guess' must be a string", 400)
        session = store.get(session_id)
        with session.lock:
            session.submit_guess(text, settings.guess_match_threshold)
            return jsonify(session.snapshot())

    @app.route("/api/game/<session_id>/next", methods=["POST"])
    def next_song(session_id: str):
        session = store.get(session_id)
        with session.lock:
            session.next_song()
            return jsonify(session.snapshot())

    return app


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Hummify guess-the-song server.")
    parser.add_argument("--host", default=None, help="Interface to bind (default: HOST or 127.0.0.1).")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: PORT or 5000).")
    parser.add_argument("--pick", action="store_true", help="Pick one song, print it as JSON and exit.")
    parser.add_argument("--verbose", action="store_true", help="Enable informational logging.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def run_pick(settings: AppSettings) -> int:
    picker = SongPicker.from_settings(settings)
    try:
        track = picker.pick_song()
    finally:
        picker.close()
    if track is None:
        LOG.error("No valid songs found after multiple attempts")
        return 1
    print(json.dumps(track.to_record(), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings, verbose=args.verbose, debug=args.debug)

    if args.pick:
        exit_code = run_pick(settings)
        if exit_code != 0:
            sys.exit(exit_code)
        return

    app = create_app(settings)
    host = args.host or settings.host
    port = args.port or settings.port
    LOG.info("Serving Hummify on http://%s:%d (%d stages, Last.fm %s)", host, port, MAX_GUESSES, "on" if settings.lastfm_enabled else "off")
    app.run(host=host, port=port, debug=args.debug, threaded=True)


if __name__ == "__main__":
    main()
