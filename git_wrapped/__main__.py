import sys

from git_wrapped.git_wrapped import main

sys.exit(main())
