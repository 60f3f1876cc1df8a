"""HTML pages shown to the user-agent during the Slack sign-in flow.

Used only when there is no client redirect URI we can safely send the
browser back to (forged or expired state, unknown client, bad redirect).
"""

ERROR_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authorization failed - Slack MCP Server</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 400px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0 0 24px; }}
        .error {{ background: #FEF2F2; color: #B91C1C; padding: 12px; border-radius: 8px; margin-bottom: 20px; border: 1px solid #FECACA; }}
        .info {{ background: #F5F5F0; color: #6B6860; padding: 12px; border-radius: 8px; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{title}</h1>
        <p>The MCP client could not be connected to Slack.</p>
        <div class="error">{message}</div>
        <div class="info">Close this window and start the connection again from your MCP client.</div>
    </div>
</body>
</html>
"""
