from __future__ import annotations


def render_dashboard(*, app_name: str = "task-dashboard-api", poll_interval_ms: int = 1000) -> str:
    return (
        _DASHBOARD_TEMPLATE.replace("__APP_NAME__", app_name).replace(
            "__POLL_INTERVAL_MS__", str(int(poll_interval_ms))
        )
    )


_DASHBOARD_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Task Automation Dashboard</title>
  <style>
    :root {
      --bg: #f3efe6;
      --panel: #fffaf0;
      --ink: #112433;
      --muted: #5c6b74;
      --accent: #0f8b8d;
      --line: #d7d1c3;
      --warn: #b00020;
      --ok: #136f63;
      --busy: #a46b00;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      min-height: 100vh;
      font-family: system-ui, Arial, sans-serif;
      color: var(--ink);
      background: var(--bg);
    }
    .wrap {
      max-width: 1000px;
      margin: 24px auto;
      padding: 0 16px 24px;
      display: grid;
      grid-template-columns: 3fr 2fr;
      gap: 16px;
    }
    header { grid-column: 1 / -1; }
    .title { margin: 0; font-size: 1.8rem; }
    .sub { margin: 6px 0 0; color: var(--muted); }
    ul.tasks { list-style: none; padding: 0; margin: 0; display: grid; gap: 12px; }
    .card {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 10px;
      padding: 12px;
    }
    .name { font-weight: 600; }
    .desc { opacity: 0.7; margin-top: 2px; }
    .runs { list-style: none; padding: 0; margin: 8px 0 0; font-size: 0.85rem; }
    .runs li { cursor: pointer; padding: 2px 0; font-family: monospace; }
    .runs li:hover { text-decoration: underline; }
    .status-queued { color: var(--muted); }
    .status-running { color: var(--busy); }
    .status-success { color: var(--ok); }
    .status-failed { color: var(--warn); }
    button {
      margin-top: 8px;
      border: none;
      border-radius: 8px;
      padding: 6px 12px;
      background: var(--accent);
      color: #fff;
      font-weight: 700;
      cursor: pointer;
    }
    .error { color: var(--warn); }
    pre {
      margin: 0;
      overflow: auto;
      max-height: 420px;
      background: #112433;
      color: #ebf7f7;
      border-radius: 10px;
      padding: 12px;
      font-size: 0.82rem;
      line-height: 1.42;
      white-space: pre-wrap;
    }
    @media (max-width: 780px) {
      .wrap { grid-template-columns: 1fr; }
    }
  </style>
</head>
<body>
  <main class="wrap">
    <header>
      <h1 class="title">Task Automation Dashboard</h1>
      <p class="sub">__APP_NAME__ &middot; refreshes every __POLL_INTERVAL_MS__ ms</p>
      <p class="error" id="errorText"></p>
    </header>

    <section>
      <p id="loadingText">Loading tasks…</p>
      <ul class="tasks" id="taskList"></ul>
    </section>

    <section class="card">
      <div class="name" id="runTitle">Select a run to see its logs.</div>
      <pre id="runLogs">No run selected.</pre>
    </section>
  </main>

  <script>
    const POLL_INTERVAL_MS = __POLL_INTERVAL_MS__;
    const TERMINAL = new Set(["success", "failed"]);
    const taskList = document.getElementById("taskList");
    const loadingText = document.getElementById("loadingText");
    const errorText = document.getElementById("errorText");
    const runTitle = document.getElementById("runTitle");
    const runLogs = document.getElementById("runLogs");
    let selectedRunId = null;
    let selectedRunDone = false;

    function formatTime(value) {
      return value ? new Date(value).toLocaleTimeString() : "-";
    }

    function renderTasks(tasks) {
      taskList.replaceChildren();
      for (const task of tasks) {
        const item = document.createElement("li");
        item.className = "card";

        const name = document.createElement("div");
        name.className = "name";
        name.textContent = task.name;
        const desc = document.createElement("div");
        desc.className = "desc";
        desc.textContent = task.description;

        const button = document.createElement("button");
        button.textContent = "Run";
        button.addEventListener("click", () => createRun(task.key));

        const runs = document.createElement("ul");
        runs.className = "runs";
        for (const run of task.recentRuns) {
          const line = document.createElement("li");
          line.className = `status-${run.status}`;
          line.textContent = `${formatTime(run.createdAt)}  ${run.status}  ${run.id.slice(0, 8)}`;
          line.addEventListener("click", () => selectRun(run.id));
          runs.appendChild(line);
        }

        item.append(name, desc, button, runs);
        taskList.appendChild(item);
      }
    }

    async function loadTasks() {
      try {
        const response = await fetch("/tasks");
        if (!response.ok) {
          throw new Error(`HTTP ${response.status}`);
        }
        renderTasks(await response.json());
        loadingText.hidden = true;
        errorText.textContent = "";
      } catch (err) {
        console.error(err);
        errorText.textContent = "Failed to load tasks";
      }
    }

    async function createRun(taskKey) {
      let data;
      try {
        const response = await fetch("/runs", {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: JSON.stringify({ taskKey }),
        });
        data = await response.json().catch(() => null);
        if (!response.ok) {
          alert(data?.error ?? `Failed to create run (HTTP ${response.status})`);
          return;
        }
      } catch (err) {
        console.error(err);
        alert("Failed to create run");
        return;
      }
      await selectRun(data.id);
      await loadTasks();
    }

    async function selectRun(runId) {
      selectedRunId = runId;
      selectedRunDone = false;
      await loadRun();
    }

    async function loadRun() {
      if (!selectedRunId || selectedRunDone) {
        return;
      }
      const response = await fetch(`/runs/${selectedRunId}`);
      const data = await response.json();
      if (!response.ok) {
        runTitle.textContent = data?.error ?? "Failed to load run";
        return;
      }
      selectedRunDone = TERMINAL.has(data.status);
      runTitle.textContent = `${data.taskKey} · ${data.status}`;
      runLogs.textContent = data.logs
        .map((line) => `${formatTime(line.ts)} [${line.level}] ${line.message}`)
        .join("\\n") || "No log lines yet.";
    }

    loadTasks();
    setInterval(() => {
      loadTasks();
      loadRun();
    }, POLL_INTERVAL_MS);
  </script>
</body>
</html>
"""
