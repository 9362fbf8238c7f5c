"""Constants for the tennis center self-service portal."""

BASE_URL = "https://center.tennis.org.il"

LOGIN_PAGE_ENDPOINT = "/self_services/login"
LOGIN_ENDPOINT = "/self_services/login.js"
COURT_INVITATION_ENDPOINT = "/self_services/court_invitation"
SEARCH_COURT_ENDPOINT = "/self_services/search_court.js"
SET_TIME_BY_UNIT_ENDPOINT = "/self_services/set_time_by_unit"
SELECT_COURT_ENDPOINT = "/self_services/select_court_invitation.js"
MY_RENTS_ENDPOINT = "/self_services/my_rents"
CANCEL_RENT_ENDPOINT = "/self_services/cancel_rent_allocation/{allocation_id}.js"
COMPLETE_INVITATION_PATH = "/self_services/complete_invitation"

SESSION_COOKIE = "_session_id"
AUTHENTICITY_TOKEN_FIELD = "authenticity_token"
UTF8_FIELD = "utf8"
UTF8_VALUE = "✓"

REQUESTED_WITH_HEADER = "X-Requested-With"
REQUESTED_WITH_XHR = "XMLHttpRequest"

DEFAULT_HEADERS = {
    "Accept": "text/javascript, text/html, application/xhtml+xml, */*",
    "User-Agent": "pytenniscenter",
}

STORAGE_KEY_TOKEN = "itec_auth_token"
STORAGE_KEY_SESSION = "itec_session_id"
TIMESLOT_KEY_PREFIX = "timeslots_"
RESERVED_KEY_PREFIX = "reserved_"

COURT_TYPE = "1"
DURATIONS = (1, 1.5, 2, 3)
SCAN_DURATIONS = (1, 2, 3)

STATUS_AVAILABLE = "available"
STATUS_NO_COURTS = "no-courts"
STATUS_RESERVED = "reserved"

SUCCESS_MARKER = "alert-success"
NO_COURTS_MARKERS = ("מועדים אחרים", "alert-danger", "נסה מועד אחר")

BOOKING_SUCCESS_PHRASES = ("הזמנת המגרש בוצעה בהצלחה", "בוצעה בהצלחה", "success")
BOOKING_FAILURE_PHRASES = ("שגיאה", "error")

SCAN_BATCH_SIZE = 5
SCAN_BATCH_DELAY = 0.2
SUGGESTION_DELAY = 0.1
DURATION_PROBE_DELAY = 0.1

LINGER_SUCCESS_SECONDS = 3.0
LINGER_FAILURE_SECONDS = 5.0

UNITS = {
    "12": ("אופקים", "Ofakim"),
    "8": ("אשקלון", "Ashkelon"),
    "11": ("באר שבע", "Beer Sheva"),
    "40": ("דימונה", "Dimona"),
    "5": ("חיפה", "Haifa"),
    "9": ("טבריה", "Tiberias"),
    "3": ("יפו", "Jaffa"),
    "14": ("יקנעם", "Yokneam"),
    "7": ("ירושלים", "Jerusalem"),
    "46": ("כוכב יאיר", "Kochav Yair"),
    "37": ("נהריה", "Nahariya"),
    "15": ("סאג'ור", "Sajur"),
    "16": ("עכו", "Acre"),
    "6": ("ערד", "Arad"),
    "10": ("קרית אונו", "Kiryat Ono"),
    "4": ("קרית שמונה", "Kiryat Shmona"),
    "2": ("רמת השרון", "Ramat Hasharon"),
    "13": ("תל אביב (יד אליהו)", "Tel Aviv (Yad Eliyahu)"),
}

WIZARD_FORM_SELECTOR = "#form"
WIZARD_UNIT_SELECTOR = "#search_unit_id"
WIZARD_COURT_TYPE_SELECTOR = "#search_court_type"
WIZARD_DATE_SELECTOR = "#search_start_date"
WIZARD_DURATION_SELECTOR = "#search_duration"
WIZARD_SUBMIT_SELECTOR = "#step1-submit-btn"
WIZARD_RESULTS_SELECTOR = ".court_invitations_list"
WIZARD_CONFIRMATION_SELECTOR = "#step-4"

FORM_TIMEOUT_MS = 10_000
FIELD_TIMEOUT_MS = 5_000
HOUR_SELECT_TIMEOUT_MS = 10_000
HOUR_SELECT_POLLING_MS = 500
SUBMIT_TIMEOUT_MS = 5_000
RESULTS_TIMEOUT_MS = 15_000
STEP_TIMEOUT_MS = 10_000
CONFIRMATION_TIMEOUT_MS = 15_000

BROWSER_VIEWPORT = {"width": 1280, "height": 800}
BROWSER_ARGS = ("--no-sandbox", "--disable-setuid-sandbox")
