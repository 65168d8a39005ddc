"""Static pages returned to the browser after the redirect"""
import html

SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>ReAuth</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Login Successful!</h1>
    <p>You can close this window and return to the game.</p>
</body>
</html>
"""

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>ReAuth</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Login Failed</h1>
    <p>Error: {error}</p>
    <p>You can close this window and try again from the game.</p>
</body>
</html>
"""


def success_page() -> bytes:
    return SUCCESS_PAGE.encode('utf-8')


def error_page(error: str) -> bytes:
    return ERROR_PAGE.format(error=html.escape(error)).encode('utf-8')
