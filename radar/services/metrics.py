"""
Core Web Vitals grading and remediation extraction from raw Lighthouse JSON.
"""

# Google's Core Web Vitals thresholds: value <= good is "good", <= poor is
# "needs-improvement", anything above is "poor".
THRESHOLDS = {
    "lcp": {"good": 2500, "poor": 4000},  # ms
    "cls": {"good": 0.1, "poor": 0.25},
    "inp": {"good": 200, "poor": 500},  # ms
    "fcp": {"good": 1800, "poor": 3000},  # ms
    "ttfb": {"good": 800, "poor": 1800},  # ms
}

# Metrics a project can set alert thresholds on
ALERTABLE_METRICS = ("lcp", "cls", "inp")


def grade_metric(metric: str, value: float | None) -> str | None:
    if value is None:
        return None
    t = THRESHOLDS[metric]
    if value <= t["good"]:
        return "good"
    if value <= t["poor"]:
        return "needs-improvement"
    return "poor"


def format_metric_value(metric: str, value: float) -> str:
    """Human-readable value for emails: 3.2s, 180ms, 0.125."""
    if metric == "cls":
        return f"{value:.3f}"
    if metric in ("lcp", "fcp", "ttfb", "inp", "tbt"):
        return f"{value / 1000:.1f}s" if value >= 1000 else f"{round(value)}ms"
    return str(value)


METRIC_LABELS = {
    "lcp": "Largest Contentful Paint (LCP)",
    "cls": "Cumulative Layout Shift (CLS)",
    "inp": "Interaction to Next Paint (INP)",
    "fcp": "First Contentful Paint (FCP)",
    "ttfb": "Time to First Byte (TTFB)",
}


# ─── Remediation catalogue ─────────────────────────────────────────────
# Lighthouse audit id → fix guidance

AUDIT_ACTIONS = {
    "render-blocking-resources": {
        "title": "Eliminate render-blocking CSS and JavaScript",
        "fix": "Add `defer` to script tags, inline critical CSS, or preload key resources with `<link rel=preload>`.",
        "impact": "high",
    },
    "uses-optimized-images": {
        "title": "Compress and modernize images",
        "fix": "Convert images to WebP/AVIF and compress them. This usually cuts image weight by 50-80%.",
        "impact": "high",
    },
    "unused-javascript": {
        "title": "Remove JavaScript that never runs",
        "fix": "Drop unused libraries, split the bundle, or load code on demand for the pages that need it.",
        "impact": "high",
    },
    "server-response-time": {
        "title": "Speed up server response time",
        "fix": "Look for slow database queries, enable server-side caching, or move to faster hosting behind a CDN.",
        "impact": "high",
    },
    "largest-contentful-paint-element": {
        "title": "Optimize the largest content element",
        "fix": "Preload the hero image or heading, shrink it, or move it earlier in the HTML.",
        "impact": "high",
    },
    "uses-long-cache-ttl": {
        "title": "Cache static assets for longer",
        "fix": "Serve immutable assets with `Cache-Control: max-age=31536000`.",
        "impact": "medium",
    },
    "uses-text-compression": {
        "title": "Enable Gzip or Brotli compression",
        "fix": "Turn on Brotli at the server or CDN. Transfer size of HTML, CSS and JS drops 60-80%.",
        "impact": "medium",
    },
    "uses-responsive-images": {
        "title": "Serve correctly sized images",
        "fix": "Use `srcset` so small screens download small images.",
        "impact": "medium",
    },
    "offscreen-images": {
        "title": "Lazy-load offscreen images",
        "fix": "Add `loading=\"lazy\"` to `<img>` tags below the fold.",
        "impact": "medium",
    },
    "unused-css-rules": {
        "title": "Remove unused CSS",
        "fix": "Purge unused rules at build time so only the styles in use ship.",
        "impact": "medium",
    },
    "unminified-javascript": {
        "title": "Minify JavaScript",
        "fix": "Enable minification in the build tool or a CMS caching plugin.",
        "impact": "low",
    },
    "unminified-css": {
        "title": "Minify CSS",
        "fix": "Enable CSS minification in the build tool or CMS.",
        "impact": "low",
    },
    "uses-rel-preload": {
        "title": "Preload key requests",
        "fix": "Add `<link rel=preload>` in `<head>` for critical fonts, hero images and scripts.",
        "impact": "low",
    },
}

_IMPACT_ORDER = {"high": 0, "medium": 1, "low": 2}


def get_action_plan(lighthouse_raw: dict | None, limit: int = 8) -> list[dict]:
    """Failing audits (score < 0.9) from the catalogue, most impactful first."""
    audits = (lighthouse_raw or {}).get("audits") or {}
    items = []
    for audit_id, action in AUDIT_ACTIONS.items():
        audit = audits.get(audit_id)
        if audit is None or audit.get("score") is None:
            continue
        if audit["score"] >= 0.9:
            continue
        items.append({
            "auditId": audit_id,
            **action,
            "savings": audit.get("displayValue"),
        })
    items.sort(key=lambda i: _IMPACT_ORDER.get(i["impact"], 3))
    return items[:limit]
