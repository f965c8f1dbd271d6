import sys

from ft_screencast.main import main


sys.exit(main())
