"""WashAssist URLs, CSS selectors, cookie names, and browser launch flags."""

# ── URLs ─────────────────────────────────────────────────────────────────────

WASHASSIST_BASE = "https://lb.washassist.com/"
WASHASSIST_LOGIN_URL = "https://lb.washassist.com/Home/Login"
# Relative, resolved against the logged-in page's origin.
TWO_FACTOR_PROBE_PATH = "/Home/CheckTwoFacotEnabledOrResendOtp"

ANTI_CAPTCHA_BASE = "https://api.anti-captcha.com"

# ── CSS Selectors ────────────────────────────────────────────────────────────

# Tried in order, first one carrying a data-sitekey wins.
CAPTCHA_SELECTORS = (
    "#desktop-captcha",
    ".g-recaptcha",
    "[data-sitekey]",
)

SELECTORS = {
    # Login form
    "login_user": "#idLogin",
    "login_password": "#idPassword",
    "login_code": "#idCustomerCode",
    "login_submit": ".submit-login",

    # reCAPTCHA
    "captcha_container": ".g-recaptcha",
    "captcha_response": 'textarea[name="g-recaptcha-response"]',

    # Post-login page state
    "login_errors": ".error, .alert-danger, .validation-summary-errors",
}

# ── Cookies ──────────────────────────────────────────────────────────────────

REQUIRED_COOKIES = ("ASP.NET_SessionId", ".micrologicAUTH", "r_ssoCookie")

# ── Browser ──────────────────────────────────────────────────────────────────

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
)

CONTAINER_CHROMIUM_PATH = "/usr/bin/chromium-browser"

# ── In-page scripts ──────────────────────────────────────────────────────────

# Writes the token into every response field and fires the widget callback.
# Returns the number of fields written.
INJECT_TOKEN_JS = """
([token, fieldSelector, containerSelector]) => {
    const fields = Array.from(document.querySelectorAll(fieldSelector));
    for (const field of fields) {
        field.value = token;
        field.style.display = 'block';
    }
    const container = document.querySelector(containerSelector);
    if (container) {
        const callback = container.getAttribute('data-callback');
        if (callback && typeof window[callback] === 'function') {
            window[callback](token);
        }
    }
    for (const field of fields) {
        field.dispatchEvent(new Event('input', { bubbles: true }));
        field.dispatchEvent(new Event('change', { bubbles: true }));
    }
    return fields.length;
}
"""

READ_TOKEN_FIELDS_JS = """
(fieldSelector) => Array.from(document.querySelectorAll(fieldSelector)).map(f => f.value || '')
"""

TWO_FACTOR_PROBE_JS = """
async (path) => {
    try {
        const response = await fetch(path, {
            method: 'POST',
            headers: { 'content-type': 'application/json' },
            body: JSON.stringify({ loginData: {} })
        });
        return response.ok ? Boolean((await response.json()).isEnabled) : false;
    } catch (e) {
        return false;
    }
}
"""

PAGE_STATE_JS = """
([loginSelector, errorSelector]) => ({
    url: window.location.href,
    title: document.title,
    hasLoginForm: !!document.querySelector(loginSelector),
    hasErrorMessages: !!document.querySelector(errorSelector),
    readyState: document.readyState
})
"""
