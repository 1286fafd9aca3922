import logging
import time

from flask import Flask, request, jsonify

from gemini_backend import GeminiBackend
from imaging import InvalidPayloadError, split_data_url
from orchestrator import FlowError, InputValidationError, Orchestrator
from session_history import AspectRatio, GenerationRequest, ImageModel, ImageSize
from settings import KeyStore, get_settings
from system_prompt import AudienceLevel, Language, VisualStyle

logger = logging.getLogger(__name__)

settings = get_settings()
keys = KeyStore(settings.api_key)

app = Flask(__name__)

orchestrator = Orchestrator(
    GeminiBackend(keys, http_timeout_ms=settings.http_timeout_ms),
    keys,
    location_timeout=settings.location_timeout,
)


def _payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text(data, field):
    value = data.get(field)
    return value.strip() if isinstance(value, str) else ""


def _state(status=200, **extra):
    body = orchestrator.snapshot()
    body.update(extra)
    return jsonify(body), status


def _busy():
    return _state(409, rejected=True)


@app.route("/")
def index():
    return HTML_PAGE


@app.route("/api/options")
def options():
    return jsonify({
        "levels": [m.value for m in AudienceLevel],
        "styles": [m.value for m in VisualStyle],
        "languages": [m.value for m in Language],
        "aspect_ratios": [m.value for m in AspectRatio],
        "models": [m.value for m in ImageModel],
        "image_sizes": [m.value for m in ImageSize],
    })


@app.route("/api/state")
def state():
    return _state()


@app.route("/api/key", methods=["GET", "POST"])
def api_key():
    if request.method == "POST":
        keys.select(_text(_payload(), "api_key") or None)
        if keys.has_valid_key:
            orchestrator.error = None
        logger.info("API key re-selected (present=%s)", keys.has_valid_key)
    return jsonify({"has_valid_key": keys.has_valid_key})


@app.route("/api/generate", methods=["POST"])
async def generate():
    if orchestrator.is_loading:
        return _busy()

    try:
        gen_request = GenerationRequest.from_dict(_payload())
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        return jsonify({"error": f"Invalid request: {e}"}), 400

    start = time.time()
    try:
        result = await orchestrator.generate(gen_request)
    except InputValidationError as e:
        return jsonify({"error": str(e)}), 400
    elapsed = round(time.time() - start, 1)

    if result is None:
        return _state(502, elapsed=elapsed)
    return _state(elapsed=elapsed)


@app.route("/api/edit", methods=["POST"])
async def edit():
    if orchestrator.is_loading:
        return _busy()

    data = _payload()
    if orchestrator.history.latest is None:
        return jsonify({"error": "Generate an infographic before editing it."}), 400

    try:
        model = ImageModel(data["model"]) if data.get("model") else None
        aspect_ratio = AspectRatio(data["aspect_ratio"]) if data.get("aspect_ratio") else None
    except (ValueError, TypeError) as e:
        return jsonify({"error": f"Invalid request: {e}"}), 400

    start = time.time()
    try:
        result = await orchestrator.edit(_text(data, "instruction"), model=model, aspect_ratio=aspect_ratio)
    except InputValidationError as e:
        return jsonify({"error": str(e)}), 400
    elapsed = round(time.time() - start, 1)

    if result is None:
        return _state(502, elapsed=elapsed)
    return _state(elapsed=elapsed)


@app.route("/api/restore", methods=["POST"])
def restore():
    record = orchestrator.restore(_payload().get("id"))
    if record is None:
        return jsonify({"error": "Unknown image"}), 404
    return _state(restored={
        "aspect_ratio": record.aspect_ratio.value if record.aspect_ratio else None,
        "model": record.model.value if record.model else None,
        "image_size": record.image_size.value if record.image_size else None,
    })


@app.route("/api/analyze", methods=["POST"])
async def analyze():
    if orchestrator.is_loading:
        return _busy()

    data = _payload()
    try:
        language = Language(data.get("language") or Language.ENGLISH)
    except (ValueError, TypeError) as e:
        return jsonify({"error": f"Invalid request: {e}"}), 400

    start = time.time()
    try:
        result = await orchestrator.analyze(
            _text(data, "image"), _text(data, "question"), _text(data, "context"), language,
        )
    except InputValidationError as e:
        return jsonify({"error": str(e)}), 400
    elapsed = round(time.time() - start, 1)

    if result is None:
        return _state(502, elapsed=elapsed)
    return _state(elapsed=elapsed)


@app.route("/api/reset", methods=["POST"])
def reset():
    orchestrator.reset()
    return _state()


@app.route("/api/chat", methods=["POST"])
async def chat():
    message = _text(_payload(), "message")
    if not message:
        return jsonify({"error": "Message cannot be empty"}), 400

    try:
        start = time.time()
        text = await orchestrator.chat(message)
        elapsed = round(time.time() - start, 1)
        return jsonify({"text": text, "elapsed": elapsed})
    except FlowError as e:
        return jsonify({"error": str(e), "has_valid_key": keys.has_valid_key}), 502


@app.route("/api/transcribe", methods=["POST"])
async def transcribe():
    data = _payload()
    audio = _text(data, "audio")
    mime_type = _text(data, "mime_type") or "audio/webm"

    if not audio:
        return jsonify({"error": "No audio provided"}), 400

    try:
        raw, mime_type = split_data_url(audio, default_mime=mime_type)
    except InvalidPayloadError:
        return jsonify({"error": "Invalid audio data"}), 400

    try:
        text = await orchestrator.transcribe(raw, mime_type)
        return jsonify({"text": text})
    except FlowError as e:
        return jsonify({"error": str(e), "has_valid_key": keys.has_valid_key}), 502


@app.route("/api/speech", methods=["POST"])
async def speech():
    text = _text(_payload(), "text")
    if not text:
        return jsonify({"error": "Text cannot be empty"}), 400

    try:
        return jsonify(await orchestrator.speak(text))
    except FlowError as e:
        return jsonify({"error": str(e), "has_valid_key": keys.has_valid_key}), 502


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>InfoGenius</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f0f0f;
    color: #e0e0e0;
    min-height: 100vh;
  }

  .split-layout { display: flex; min-height: 100vh; }

  .panel { flex: 1; display: flex; flex-direction: column; }
  .panel.side { flex: 0 0 340px; border-left: 1px solid #1e1e1e; }

  .panel-header {
    padding: 16px 24px;
    border-bottom: 1px solid #1e1e1e;
    display: flex;
    align-items: center;
    gap: 10px;
  }
  .panel-header h2 { font-size: 0.95rem; font-weight: 600; color: #fff; }

  .badge {
    font-size: 0.65rem;
    padding: 2px 8px;
    border-radius: 4px;
    font-weight: 500;
    text-transform: uppercase;
    letter-spacing: 0.5px;
  }
  .badge-key { background: #1e3a2f; color: #4ade80; }
  .badge-key.missing { background: #3a1e1e; color: #f87171; }

  .panel-body { padding: 20px 24px; display: flex; flex-direction: column; gap: 16px; }

  .controls { display: flex; gap: 10px; flex-wrap: wrap; align-items: center; }

  select, input[type=text], input[type=password] {
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 8px;
    padding: 8px 12px;
    font-size: 0.82rem;
    outline: none;
  }
  select:hover, select:focus, input:focus { border-color: #8b5cf6; }

  textarea {
    width: 100%;
    min-height: 90px;
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 10px;
    padding: 14px;
    font-size: 0.9rem;
    font-family: inherit;
    resize: vertical;
    outline: none;
  }
  textarea:focus { border-color: #8b5cf6; }

  button {
    background: #8b5cf6;
    color: #fff;
    border: none;
    border-radius: 8px;
    padding: 8px 16px;
    font-size: 0.82rem;
    font-weight: 600;
    cursor: pointer;
  }
  button:disabled { opacity: 0.5; cursor: default; }
  button.ghost { background: #1a1a1a; border: 1px solid #2a2a2a; }
  button.recording { background: #dc2626; }

  .status { font-size: 0.8rem; color: #888; min-height: 1.2em; }
  .timer { color: #a78bfa; font-variant-numeric: tabular-nums; }
  .error { color: #f87171; font-size: 0.85rem; }

  .steps { display: flex; gap: 8px; font-size: 0.75rem; color: #555; }
  .steps span.active { color: #a78bfa; font-weight: 600; }

  .output-card {
    background: #141414;
    border: 1px solid #1e1e1e;
    border-radius: 10px;
    padding: 16px;
    display: none;
  }
  .output-card.visible { display: block; }
  .output-card img { max-width: 100%; border-radius: 8px; display: block; }
  .output-card pre { white-space: pre-wrap; font-family: inherit; font-size: 0.88rem; line-height: 1.5; }

  .facts li, .citations li { font-size: 0.82rem; margin: 4px 0 4px 18px; }
  .citations a { color: #a78bfa; }

  .history { display: grid; grid-template-columns: repeat(auto-fill, minmax(120px, 1fr)); gap: 10px; }
  .history img { width: 100%; border-radius: 6px; cursor: pointer; border: 1px solid #2a2a2a; }
  .history img:hover { border-color: #8b5cf6; }

  .chat-log { display: flex; flex-direction: column; gap: 8px; max-height: 50vh; overflow-y: auto; }
  .msg { font-size: 0.82rem; padding: 8px 10px; border-radius: 8px; line-height: 1.4; }
  .msg.user { background: #2e1e3a; align-self: flex-end; }
  .msg.model { background: #1a1a1a; }
</style>
</head>
<body>
<div class="split-layout">
  <div class="panel">
    <div class="panel-header">
      <h2>InfoGenius</h2>
      <span class="badge badge-key" id="keyBadge">key</span>
      <button class="ghost" id="resetBtn">Reset</button>
    </div>
    <div class="panel-body">
      <div class="controls" id="keyRow" style="display:none">
        <input type="password" id="keyInput" placeholder="Paste a Gemini API key with billing enabled" size="48">
        <button id="keyBtn">Select Key</button>
      </div>

      <textarea id="topic" placeholder="Describe a topic to research and visualize, or a question about an uploaded image..."></textarea>
      <div class="controls">
        <select id="level"></select>
        <select id="style"></select>
        <select id="language"></select>
        <select id="aspect"></select>
        <select id="model"></select>
        <select id="size"></select>
      </div>
      <div class="controls">
        <input type="file" id="upload" accept="image/*">
        <input type="text" id="analysisContext" placeholder="Additional context for analysis" size="32">
        <button class="ghost" id="micBtn">Mic</button>
        <button id="generateBtn">Generate</button>
      </div>

      <div class="steps"><span id="step1">1 Research</span><span id="step2">2 Design</span></div>
      <div class="status" id="status"></div>
      <div class="error" id="error"></div>

      <div class="output-card" id="factsCard"><ul class="facts" id="facts"></ul></div>
      <div class="output-card" id="resultCard"></div>

      <div class="controls" id="editRow" style="display:none">
        <input type="text" id="editInput" placeholder="Describe a modification..." size="48">
        <button id="editBtn">Modify</button>
        <button class="ghost" id="speakBtn">Read aloud</button>
      </div>

      <div class="output-card" id="citationsCard"><ul class="citations" id="citations"></ul></div>
      <div class="history" id="history"></div>
    </div>
  </div>

  <div class="panel side">
    <div class="panel-header"><h2>Assistant</h2></div>
    <div class="panel-body">
      <div class="chat-log" id="chatLog"></div>
      <div class="controls">
        <input type="text" id="chatInput" placeholder="Ask InfoGenius..." size="26">
        <button id="chatBtn">Send</button>
      </div>
    </div>
  </div>
</div>

<script>
  const $ = id => document.getElementById(id);
  let busy = false;
  let sourceImage = null;

  // ── API call helper ──
  async function callApi(path, body) {
    const res = await fetch(path, {
      method: body === undefined ? 'GET' : 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: body === undefined ? undefined : JSON.stringify(body),
    });
    const data = await res.json();
    return { ok: res.ok, status: res.status, data };
  }

  // ── Timer helper ──
  function createTimer(statusEl) {
    let interval = null;
    return {
      start(label) {
        const t0 = Date.now();
        clearInterval(interval);
        interval = setInterval(() => {
          const s = ((Date.now() - t0) / 1000).toFixed(1);
          statusEl.innerHTML = '<span class="timer">' + s + 's</span> ' + label;
        }, 100);
      },
      stop() { clearInterval(interval); interval = null; statusEl.textContent = ''; }
    };
  }
  const timer = createTimer($('status'));

  function fillSelect(el, values, selected) {
    el.innerHTML = '';
    values.forEach(v => {
      const opt = document.createElement('option');
      opt.value = v; opt.textContent = v;
      if (v === selected) opt.selected = true;
      el.appendChild(opt);
    });
  }

  function render(state) {
    $('error').textContent = state.error || '';
    $('keyBadge').textContent = state.has_valid_key ? 'key ok' : 'key required';
    $('keyBadge').classList.toggle('missing', !state.has_valid_key);
    $('keyRow').style.display = state.has_valid_key ? 'none' : 'flex';
    $('step1').classList.toggle('active', state.step === 1);
    $('step2').classList.toggle('active', state.step === 2);

    const facts = state.facts || [];
    $('facts').innerHTML = '';
    facts.forEach(f => { const li = document.createElement('li'); li.textContent = f; $('facts').appendChild(li); });
    $('factsCard').classList.toggle('visible', facts.length > 0);

    const cites = state.citations || [];
    $('citations').innerHTML = '';
    cites.forEach(c => {
      const li = document.createElement('li');
      const a = document.createElement('a');
      a.href = c.url; a.target = '_blank'; a.rel = 'noopener'; a.textContent = c.title;
      li.appendChild(a); $('citations').appendChild(li);
    });
    $('citationsCard').classList.toggle('visible', cites.length > 0);

    const card = $('resultCard');
    card.innerHTML = '';
    const cur = state.current;
    if (cur && cur.kind === 'image') {
      const img = document.createElement('img');
      img.src = cur.image_data; img.alt = cur.prompt;
      card.appendChild(img);
    } else if (cur && cur.kind === 'analysis') {
      if (state.selected_image) {
        const img = document.createElement('img');
        img.src = state.selected_image; img.alt = 'Analyzed image';
        card.appendChild(img);
      }
      const pre = document.createElement('pre');
      pre.textContent = cur.report;
      card.appendChild(pre);
    }
    card.classList.toggle('visible', !!cur);
    $('editRow').style.display = cur ? 'flex' : 'none';
    $('editInput').disabled = !(cur && cur.kind === 'image');
    $('editBtn').disabled = !(cur && cur.kind === 'image');

    $('history').innerHTML = '';
    (state.history || []).forEach(rec => {
      const img = document.createElement('img');
      img.src = rec.image_data; img.title = rec.prompt;
      img.addEventListener('click', () => restore(rec.id));
      $('history').appendChild(img);
    });
  }

  function setBusy(on, label) {
    busy = on;
    ['generateBtn', 'editBtn'].forEach(id => $(id).disabled = on);
    if (on) timer.start(label); else timer.stop();
  }

  function currentLocation() {
    return new Promise(resolve => {
      if (!navigator.geolocation) return resolve(null);
      navigator.geolocation.getCurrentPosition(
        pos => resolve({ latitude: pos.coords.latitude, longitude: pos.coords.longitude }),
        () => resolve(null),
        { timeout: 5000 },
      );
    });
  }

  async function generate() {
    if (busy) return;
    const topic = $('topic').value.trim();
    if (!topic && !sourceImage) {
      $('error').textContent = 'Please enter a topic or upload an image to analyze.';
      return;
    }
    setBusy(true, sourceImage ? 'Analyzing image content...' : 'Researching topic with Search & Maps...');
    try {
      const location = sourceImage ? null : await currentLocation();
      const { data } = await callApi('/api/generate', {
        topic,
        level: $('level').value,
        style: $('style').value,
        language: $('language').value,
        aspect_ratio: $('aspect').value,
        model: $('model').value,
        image_size: $('size').value,
        source_image: sourceImage,
        analysis_context: $('analysisContext').value,
        location,
      });
      if (data.history) render(data); else $('error').textContent = data.error || '';
    } catch (e) {
      $('error').textContent = e.message;
    } finally {
      setBusy(false);
    }
  }

  async function modify() {
    const instruction = $('editInput').value.trim();
    if (busy || !instruction) return;
    setBusy(true, 'Processing Modification: "' + instruction + '"...');
    try {
      const { data } = await callApi('/api/edit', {
        instruction, model: $('model').value, aspect_ratio: $('aspect').value,
      });
      if (data.history) { render(data); $('editInput').value = ''; }
      else $('error').textContent = data.error || '';
    } finally {
      setBusy(false);
    }
  }

  async function restore(id) {
    const { ok, data } = await callApi('/api/restore', { id });
    if (!ok) return;
    sourceImage = null;
    $('upload').value = '';
    const r = data.restored || {};
    if (r.aspect_ratio) $('aspect').value = r.aspect_ratio;
    if (r.model) $('model').value = r.model;
    if (r.image_size) $('size').value = r.image_size;
    render(data);
  }

  async function playSpeech(text) {
    const { ok, data } = await callApi('/api/speech', { text });
    if (!ok) { console.error('TTS failed', data.error); return; }
    const ctx = new (window.AudioContext || window.webkitAudioContext)({ sampleRate: data.sample_rate });
    const buffer = ctx.createBuffer(1, data.samples.length, data.sample_rate);
    buffer.getChannelData(0).set(data.samples);
    const source = ctx.createBufferSource();
    source.buffer = buffer;
    source.connect(ctx.destination);
    source.start();
  }

  // ── Microphone → transcription ──
  let recorder = null;
  let chunks = [];

  async function toggleMic() {
    if (recorder) { recorder.stop(); return; }
    try {
      const stream = await navigator.mediaDevices.getUserMedia({ audio: true });
      recorder = new MediaRecorder(stream);
      chunks = [];
      recorder.ondataavailable = e => { if (e.data.size > 0) chunks.push(e.data); };
      recorder.onstop = () => {
        stream.getTracks().forEach(t => t.stop());
        recorder = null;
        $('micBtn').classList.remove('recording');
        const reader = new FileReader();
        reader.onloadend = async () => {
          setBusy(true, 'Transcribing audio...');
          try {
            const { ok, data } = await callApi('/api/transcribe', { audio: reader.result, mime_type: 'audio/webm' });
            if (ok) $('topic').value = data.text; else $('error').textContent = data.error;
          } finally {
            setBusy(false);
          }
        };
        reader.readAsDataURL(new Blob(chunks, { type: 'audio/webm' }));
      };
      recorder.start();
      $('micBtn').classList.add('recording');
    } catch (e) {
      recorder = null;
      $('micBtn').classList.remove('recording');
      $('error').textContent = 'Microphone access denied or not available.';
    }
  }

  async function sendChat() {
    const message = $('chatInput').value.trim();
    if (!message) return;
    $('chatInput').value = '';
    appendMsg('user', message);
    const { ok, data } = await callApi('/api/chat', { message });
    appendMsg('model', ok ? data.text : data.error);
  }

  function appendMsg(role, text) {
    const div = document.createElement('div');
    div.className = 'msg ' + role;
    div.textContent = text;
    if (role === 'model') div.addEventListener('click', () => playSpeech(text));
    $('chatLog').appendChild(div);
    $('chatLog').scrollTop = $('chatLog').scrollHeight;
  }

  $('upload').addEventListener('change', e => {
    const file = e.target.files[0];
    if (!file) { sourceImage = null; return; }
    const reader = new FileReader();
    reader.onloadend = () => { sourceImage = reader.result; };
    reader.readAsDataURL(file);
  });

  $('generateBtn').addEventListener('click', generate);
  $('topic').addEventListener('keydown', e => {
    if (e.key === 'Enter' && (e.metaKey || e.ctrlKey)) { e.preventDefault(); generate(); }
  });
  $('editBtn').addEventListener('click', modify);
  $('editInput').addEventListener('keydown', e => { if (e.key === 'Enter') modify(); });
  $('speakBtn').addEventListener('click', () => {
    const text = $('resultCard').textContent.trim() || ($('facts').textContent || '').trim();
    if (text) playSpeech(text);
  });
  $('micBtn').addEventListener('click', toggleMic);
  $('chatBtn').addEventListener('click', sendChat);
  $('chatInput').addEventListener('keydown', e => { if (e.key === 'Enter') sendChat(); });
  $('keyBtn').addEventListener('click', async () => {
    const { data } = await callApi('/api/key', { api_key: $('keyInput').value });
    $('keyInput').value = '';
    if (data.has_valid_key) render((await callApi('/api/state')).data);
  });
  $('resetBtn').addEventListener('click', async () => {
    sourceImage = null;
    $('upload').value = '';
    $('topic').value = '';
    render((await callApi('/api/reset', {})).data);
  });

  (async () => {
    const { data: opts } = await callApi('/api/options');
    fillSelect($('level'), opts.levels, 'High School');
    fillSelect($('style'), opts.styles, 'Default');
    fillSelect($('language'), opts.languages, 'English');
    fillSelect($('aspect'), opts.aspect_ratios, '16:9');
    fillSelect($('model'), opts.models, 'gemini-2.5-flash-image');
    fillSelect($('size'), opts.image_sizes, '1K');
    render((await callApi('/api/state')).data);
  })();
</script>
</body>
</html>
"""

if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    )
    app.run(debug=True, port=settings.port, threaded=True)
