"""Debug GUI server: tour map in the browser, click to move the simulated walker."""

import asyncio
import http.server
import json
import queue
import socketserver
import threading
import time
import webbrowser
from functools import partial
from typing import Optional

import websockets

from .models import Location, Tour

PLAYER_COMMANDS = {"pause", "resume", "stop", "next", "previous", "seek", "dismiss"}

PAGE_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <title>Walkscape Player Debugger</title>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" />
    <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
    <style>
        html, body { height: 100%; margin: 0; font: 14px system-ui, sans-serif; color: #0f172a; }
        body { display: grid; grid-template-columns: 1fr 360px; grid-template-rows: 48px 1fr; }
        #bar { grid-column: 1 / 3; display: flex; align-items: center; gap: 12px; padding: 0 16px; background: #0f172a; color: #f8fafc; }
        #bar h1 { font-size: 16px; margin: 0; flex: 1; }
        #link { font-size: 12px; padding: 3px 10px; border-radius: 10px; background: #b91c1c; }
        #link.up { background: #15803d; }
        #map { position: relative; }
        #side { display: flex; flex-direction: column; border-left: 1px solid #cbd5e1; background: #f1f5f9; min-height: 0; }
        #side section { padding: 12px 14px; border-bottom: 1px solid #cbd5e1; }
        #side h2 { margin: 0 0 8px; font-size: 11px; letter-spacing: 1px; color: #475569; }
        dl { display: grid; grid-template-columns: auto 1fr; gap: 4px 10px; margin: 0; }
        dt { color: #64748b; }
        dd { margin: 0; font-weight: 600; }
        #transport button { min-width: 44px; padding: 5px 8px; margin: 6px 2px 0 0; border: 1px solid #94a3b8; border-radius: 4px; background: #fff; cursor: pointer; }
        #caption { min-height: 36px; padding: 8px; background: #fffbeb; border: 1px solid #fcd34d; border-radius: 4px; white-space: pre-line; }
        #notice { display: none; margin-top: 8px; padding: 6px 8px; background: #fee2e2; color: #991b1b; border-radius: 4px; cursor: pointer; }
        #journal { flex: 1; overflow-y: auto; margin: 0; padding: 10px 14px; background: #0f172a; color: #cbd5e1; font: 11px ui-monospace, monospace; list-style: none; }
        #journal li { margin-bottom: 4px; }
        #journal time { color: #64748b; margin-right: 6px; }
        #journal code { color: #7dd3fc; }
        .walker-dot { width: 14px; height: 14px; border-radius: 50%; background: #dc2626; border: 2px solid #fff; box-shadow: 0 0 4px rgba(0,0,0,0.5); }
    </style>
</head>
<body>
    <div id="bar"><h1 id="title">Walkscape</h1><span id="link">offline</span></div>
    <div id="map"></div>
    <div id="side">
        <section>
            <h2>PLAYER</h2>
            <dl>
                <dt>status</dt><dd id="status">idle</dd>
                <dt>region</dt><dd id="region">-</dd>
                <dt>time</dt><dd id="clock">-</dd>
                <dt>next</dt><dd id="next">-</dd>
                <dt>position</dt><dd id="source">-</dd>
            </dl>
            <div id="transport">
                <button data-cmd="previous">prev</button>
                <button data-cmd="seek" data-delta="-10">-10</button>
                <button data-cmd="pause">pause</button>
                <button data-cmd="resume">play</button>
                <button data-cmd="seek" data-delta="10">+10</button>
                <button data-cmd="stop">stop</button>
                <button data-cmd="next">next</button>
            </div>
            <div id="notice" data-cmd="dismiss"></div>
        </section>
        <section>
            <h2>SUBTITLE</h2>
            <div id="caption"></div>
        </section>
        <ul id="journal"></ul>
    </div>
    <script>
        var map = L.map('map').setView([45.0705, 7.6868], 15);
        L.tileLayer('https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png', {
            attribution: '&copy; OpenStreetMap contributors'
        }).addTo(map);

        var socket = null;
        var regions = L.layerGroup().addTo(map);
        var circles = {};
        var walker = null;

        function $(id) { return document.getElementById(id); }

        function send(type, data) {
            if (socket && socket.readyState === WebSocket.OPEN) {
                socket.send(JSON.stringify({type: type, data: data}));
                return true;
            }
            return false;
        }

        function journal(text, data) {
            var item = document.createElement('li');
            var stamp = document.createElement('time');
            stamp.textContent = new Date().toLocaleTimeString();
            item.appendChild(stamp);
            item.appendChild(document.createTextNode(text));
            if (data) {
                var extra = document.createElement('code');
                extra.textContent = ' ' + JSON.stringify(data);
                item.appendChild(extra);
            }
            var list = $('journal');
            list.appendChild(item);
            if (list.children.length > 200) { list.removeChild(list.firstChild); }
            list.scrollTop = list.scrollHeight;
        }

        function drawTour(tour) {
            $('title').textContent = tour.title || tour.slug || 'Walkscape';
            regions.clearLayers();
            circles = {};
            var line = tour.regions.map(function(r) { return [r.lat, r.lng]; });
            tour.regions.forEach(function(r) {
                circles[r.id] = L.circle([r.lat, r.lng], {radius: r.radiusM, color: '#2563eb', weight: 2, fillOpacity: 0.12})
                    .bindTooltip('#' + r.sort + ' ' + (r.name || r.id))
                    .addTo(regions);
            });
            if (line.length > 1) {
                L.polyline(line, {color: '#475569', weight: 2, dashArray: '4 8'}).addTo(regions);
            }
            if (line.length) { map.fitBounds(line, {padding: [40, 40]}); }
            journal('tour ' + tour.slug + ' with ' + line.length + ' regions');
        }

        function showState(state) {
            var p = state.player || {};
            $('status').textContent = p.status || 'idle';
            $('region').textContent = p.activeRegionId || '-';
            $('clock').textContent = p.duration ? p.currentTime.toFixed(1) + ' / ' + p.duration.toFixed(1) : '-';
            $('next').textContent = state.next || '-';
            $('source').textContent = state.gps_status || '-';
            $('caption').textContent = p.subtitle || '';
            $('notice').textContent = p.notice || '';
            $('notice').style.display = p.notice ? 'block' : 'none';
            for (var id in circles) {
                circles[id].setStyle({color: id === p.activeRegionId ? '#16a34a' : '#2563eb'});
            }
            if (state.location) {
                var at = [state.location.lat, state.location.lng];
                if (!walker) {
                    walker = L.marker(at, {icon: L.divIcon({className: 'walker-dot', iconSize: [14, 14]})}).addTo(map);
                } else {
                    walker.setLatLng(at);
                }
            }
        }

        var handlers = {
            tour: drawTour,
            state: showState,
            log: function(d) { journal(d.message, d.data); },
            subtitle: function(d) { $('caption').textContent = d.text || ''; }
        };

        function dial() {
            socket = new WebSocket('ws://localhost:{{WS_PORT}}');
            socket.onopen = function() { $('link').textContent = 'live'; $('link').className = 'up'; };
            socket.onclose = function() {
                $('link').textContent = 'offline';
                $('link').className = '';
                setTimeout(dial, 2000);
            };
            socket.onmessage = function(event) {
                var msg = JSON.parse(event.data);
                if (handlers[msg.type]) { handlers[msg.type](msg.data); }
            };
        }

        document.body.addEventListener('click', function(e) {
            var cmd = e.target.getAttribute('data-cmd');
            if (!cmd) { return; }
            var data = {name: cmd};
            if (e.target.hasAttribute('data-delta')) { data.delta = Number(e.target.getAttribute('data-delta')); }
            send('command', data);
        });

        map.on('click', function(e) {
            if (send('location', {lat: e.latlng.lat, lng: e.latlng.lng})) {
                journal('moved to ' + e.latlng.lat.toFixed(5) + ', ' + e.latlng.lng.toFixed(5));
            }
        });

        dial();
    </script>
</body>
</html>'''


def tour_payload(tour: Tour) -> dict:
    """Regions of the tour in walking order, as drawn by the page"""
    return {
        "id": tour.id,
        "slug": tour.slug,
        "title": tour.title,
        "regions": [r.to_dict() for r in tour.ordered_regions()],
    }


class _PageHandler(http.server.BaseHTTPRequestHandler):
    """Serves the single debugger page"""

    def __init__(self, ws_port: int, *args, **kwargs):
        self.ws_port = ws_port
        super().__init__(*args, **kwargs)

    def do_GET(self):
        if self.path not in ("/", "/index.html"):
            self.send_error(404)
            return
        body = PAGE_TEMPLATE.replace("{{WS_PORT}}", str(self.ws_port)).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class DebugServer:
    """Browser debugger: page over HTTP, live updates and map clicks over a WebSocket.

    Both servers run in daemon threads. Clicks land on ``location_queue``
    and transport buttons on ``command_queue``; the player loop drains them.
    """

    def __init__(self, http_port: int = 8080, ws_port: int = 8765, open_browser: bool = True):
        self.http_port = http_port
        self.ws_port = ws_port
        self.open_browser = open_browser
        self.location_queue: queue.Queue = queue.Queue()
        self.command_queue: queue.Queue = queue.Queue()
        self.tour_data: Optional[dict] = None
        self.clients: set = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.threads: list[threading.Thread] = []
        self._running = False

    def start(self):
        self._running = True
        for target in (self._serve_page, self._serve_socket):
            thread = threading.Thread(target=target, daemon=True)
            thread.start()
            self.threads.append(thread)
        time.sleep(0.5)

        url = f"http://localhost:{self.http_port}"
        print(f"Debug GUI available at: {url}")
        if self.open_browser:
            webbrowser.open(url)

    def stop(self):
        self._running = False

    def _serve_page(self):
        socketserver.TCPServer.allow_reuse_address = True
        with socketserver.TCPServer(("", self.http_port), partial(_PageHandler, self.ws_port)) as httpd:
            httpd.timeout = 0.5
            while self._running:
                httpd.handle_request()

    def _serve_socket(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._socket_main())
        except OSError as e:
            print(f"WebSocket server error: {e}")

    async def _socket_main(self):
        async with websockets.serve(self._client_session, "localhost", self.ws_port):
            while self._running:
                await asyncio.sleep(0.1)

    async def _client_session(self, websocket):
        self.clients.add(websocket)
        try:
            if self.tour_data:
                await websocket.send(json.dumps({"type": "tour", "data": self.tour_data}))
            async for message in websocket:
                self.handle_message(message)
        finally:
            self.clients.discard(websocket)

    def handle_message(self, message: str) -> Optional[str]:
        """Queue one browser message; returns 'location', 'command' or None if ignored"""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            print(f"Debug GUI: ignoring malformed message {message[:80]!r}")
            return None
        if not isinstance(data, dict):
            return None
        payload = data.get("data") or {}
        kind = data.get("type")

        if kind == "location":
            try:
                lng = payload["lng"] if "lng" in payload else payload["lon"]
                location = Location(lat=float(payload["lat"]), lng=float(lng),
                                    accuracy=0, timestamp=time.time())
            except (KeyError, TypeError, ValueError):
                print(f"Debug GUI: bad location payload {payload!r}")
                return None
            self.location_queue.put(location)
            return "location"

        if kind == "command" and payload.get("name") in PLAYER_COMMANDS:
            self.command_queue.put(payload)
            return "command"
        return None

    def broadcast(self, msg_type: str, data: dict):
        """Push a message to every open page; no-op before the socket loop runs"""
        if self.loop is None or not self.clients:
            return
        text = json.dumps({"type": msg_type, "data": data}, default=str)

        async def push():
            for client in list(self.clients):
                try:
                    await client.send(text)
                except websockets.ConnectionClosed:
                    self.clients.discard(client)

        asyncio.run_coroutine_threadsafe(push(), self.loop)

    def send_tour(self, tour: Tour):
        self.tour_data = tour_payload(tour)
        self.broadcast("tour", self.tour_data)

    def send_state(self, state: dict):
        self.broadcast("state", state)

    def send_log(self, message: str, data: Optional[dict] = None):
        self.broadcast("log", {"message": message, "data": data})

    def send_subtitle(self, text: str):
        self.broadcast("subtitle", {"text": text})

    def get_clicked_location(self, timeout: float = 30) -> Optional[Location]:
        """Next map click, waiting up to timeout seconds"""
        try:
            return self.location_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending_commands(self) -> list[dict]:
        """Drain player commands sent from the browser"""
        commands = []
        while not self.command_queue.empty():
            commands.append(self.command_queue.get_nowait())
        return commands


class WebSocketGPS:
    """Position source fed by map clicks in the debug GUI.

    Unlike a device GPS it keeps reporting the last clicked point until the
    next click, so the walker stays where it was put.
    """

    def __init__(self, debug_server: DebugServer):
        self.server = debug_server
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        clicked = self.server.get_clicked_location(timeout=timeout if self.last_location is None else 0.05)
        if clicked is not None:
            self.last_location = clicked
            self.consecutive_failures = 0
        elif self.last_location is None:
            self.consecutive_failures += 1
        return self.last_location

    def get_status(self) -> str:
        return "Debug GUI (click map to set position)"
