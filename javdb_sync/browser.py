"""
Selenium helpers: Firefox driver setup, config-driven element lookup, the
username/password login and cookie transfer between the browser and the
requests session.
"""

import logging
import time

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.firefox.options import Options
from selenium.webdriver.firefox.service import Service as FirefoxService
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from .errors import NotAuthenticatedOrStructureChanged

logger = logging.getLogger(__name__)

BY_MAP = {
    'id': By.ID,
    'name': By.NAME,
    'css': By.CSS_SELECTOR,
    'xpath': By.XPATH,
    'tag': By.TAG_NAME,
    'class': By.CLASS_NAME,
}


def create_driver(headless=True, user_agent=None):
    """Start a Firefox WebDriver"""
    firefox_options = Options()
    if headless:
        firefox_options.add_argument("--headless")
    firefox_options.add_argument("--disable-gpu")
    firefox_options.set_preference("media.autoplay.default", 1)
    firefox_options.set_preference("dom.ipc.processPrelaunch.enabled", False)
    if user_agent:
        firefox_options.set_preference("general.useragent.override", user_agent)
    return webdriver.Firefox(service=FirefoxService(), options=firefox_options)


def find_element_from_config(driver, config_selectors, timeout=2):
    """Try each {type, value} selector from config until one matches"""
    if not isinstance(config_selectors, list):
        config_selectors = [config_selectors]

    for selector_config in config_selectors:
        by = BY_MAP.get(selector_config.get('type', 'css'), By.CSS_SELECTOR)
        try:
            return WebDriverWait(driver, timeout).until(
                EC.presence_of_element_located((by, selector_config.get('value')))
            )
        except TimeoutException:
            continue
    return None


# ==================== COOKIE TRANSFER ====================

def session_cookies_as_dicts(session):
    """requests cookie jar -> Selenium cookie dicts"""
    return [
        {
            'name': c.name,
            'value': c.value,
            'domain': c.domain,
            'path': c.path or '/',
            'secure': bool(c.secure),
        }
        for c in session.cookies
    ]


def apply_cookies_to_session(session, cookies):
    """Copy Selenium cookie dicts into a requests session"""
    for cookie in cookies or []:
        if not cookie.get('name'):
            continue
        session.cookies.set(
            cookie['name'],
            cookie.get('value', ''),
            domain=cookie.get('domain'),
            path=cookie.get('path', '/'),
        )


def apply_cookies_to_driver(driver, site_url, cookies):
    """Load the site once so the cookie domain matches, then add the cookies"""
    if not cookies:
        return False
    driver.get(site_url)
    for cookie in cookies:
        try:
            driver.add_cookie({
                'name': cookie.get('name'),
                'value': cookie.get('value'),
                'path': cookie.get('path', '/'),
                'secure': cookie.get('secure', False),
            })
        except WebDriverException as e:
            logger.debug("Skipping cookie %s: %s", cookie.get('name'), e)
    return True


# ==================== AUTHENTICATION ====================

def is_logged_in(page_html, markers):
    page_html = page_html.lower()
    return any(marker.lower() in page_html for marker in markers)


def browser_login(login_page, username, password, login_config, headless=True,
                  timeout=30, user_agent=None):
    """Log in with a throwaway browser and return its cookies"""
    if not username or not password:
        raise NotAuthenticatedOrStructureChanged(
            "No credentials: set JAVDB_COOKIE or JAVDB_USERNAME/JAVDB_PASSWORD in .env"
        )

    driver = create_driver(headless=headless, user_agent=user_agent)
    try:
        print(f"→ Navigating to login page: {login_page}")
        driver.get(login_page)

        username_field = find_element_from_config(driver, login_config.get('username_field', []), timeout=5)
        if not username_field:
            raise NotAuthenticatedOrStructureChanged("Username field not found on login page")
        username_field.send_keys(username)

        password_field = find_element_from_config(driver, login_config.get('password_field', []), timeout=3)
        if not password_field:
            raise NotAuthenticatedOrStructureChanged("Password field not found on login page")
        password_field.send_keys(password)

        submit_button = find_element_from_config(driver, login_config.get('submit_button', []), timeout=2)
        print("→ Submitting login...")
        if submit_button:
            submit_button.click()
        else:
            password_field.send_keys("\n")

        try:
            WebDriverWait(driver, timeout).until(lambda d: d.current_url != login_page)
        except TimeoutException:
            logger.warning("Login page did not redirect within %ss", timeout)
        time.sleep(1)

        if not is_logged_in(driver.page_source, login_config.get('verification_markers', ['logout'])):
            raise NotAuthenticatedOrStructureChanged(f"Login verification failed. URL: {driver.current_url}")

        print("✓ Login completed")
        return driver.get_cookies()
    finally:
        try:
            driver.quit()
        except WebDriverException as e:
            logger.debug("Error closing login browser: %s", e)
