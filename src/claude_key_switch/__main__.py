from claude_key_switch.cli import main

main()
