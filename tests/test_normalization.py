from timer_record.normalization import normalize_app_name, normalize_window_title


def test_normalize_app_name():
    assert normalize_app_name("  Slack ") == "Slack"
    assert normalize_app_name(None) == ""


def test_browser_suffix_and_tab_count_are_stripped():
    title = "Pull requests and 3 more pages - Personal - Microsoft Edge"
    assert normalize_window_title("msedge.exe", title) == "Pull requests"
    assert normalize_window_title("Google Chrome", "Inbox - Google Chrome") == "Inbox"


def test_other_apps_keep_their_title():
    assert normalize_window_title("Code", "  main.py  -  project ") == "main.py - project"
    assert normalize_window_title(None, " notes ") == "notes"
    assert normalize_window_title("Code", None) == ""
